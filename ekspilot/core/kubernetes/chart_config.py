from dataclasses import dataclass


@dataclass(frozen=True)
class HelmChart:
    name: str
    repo_url: str
    version: str

    def to_dict(self) -> dict:
        return {'name': self.name, 'repo_url': self.repo_url, 'version': self.version}
