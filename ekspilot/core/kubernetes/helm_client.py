from pyhelm3 import Client, ReleaseRevision
from pyhelm3.errors import ReleaseNotFoundError


class HelmClient(Client):
    async def find_current_revision(self, release_name: str, namespace: str | None = None) -> ReleaseRevision | None:
        """
        Return the current revision of the named release, or None when the release
        has never been installed into the namespace.
        """
        try:
            return await self.get_current_revision(release_name, namespace=namespace)
        except ReleaseNotFoundError:
            return None
