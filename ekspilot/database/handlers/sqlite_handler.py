from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ekspilot.database.handlers.base_database_handler import BaseDatabaseHandler
from ekspilot.database.models import BaseModel, ProvisioningRun


class SQLiteHandler(BaseDatabaseHandler):
    def __init__(self, db_url: str) -> None:
        self.engine = create_engine(db_url)

        BaseModel.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_run(self, run: ProvisioningRun) -> int:
        with self.session() as session:
            session.add(run)
            session.commit()
            session.refresh(run)
            run_id = run.id

            return run_id

    def get_run(self, run_id: int) -> ProvisioningRun | None:
        with self.session() as session:
            run = session.query(ProvisioningRun).filter_by(id=run_id).first()

            return run or None

    def get_runs(self) -> list[ProvisioningRun]:
        with self.session() as session:
            runs = session.query(ProvisioningRun).order_by(ProvisioningRun.id).all()

            return runs

    def update_run(self, run_id: int, updated_data: dict) -> None:
        with self.session() as session:
            session.query(ProvisioningRun).filter_by(id=run_id).update(updated_data)
            session.commit()
