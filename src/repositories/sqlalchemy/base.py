from sqlalchemy.orm import Session


class SqlalchemyRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
