from sqlalchemy import Column, String, DateTime, Text, func

from biotrack.database import Base


ROLES = ("student", "teacher", "admin")


class Identity(Base):
    __tablename__ = "identities"

    identity_id = Column(String(128), primary_key=True, index=True)
    display_name = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="student")
    email = Column(String(255), nullable=True)

    # Face embedding stored as a JSON list of floats; written once at enrollment
    embedding = Column(Text, nullable=True)
    enrolled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def is_enrolled(self) -> bool:
        return self.embedding is not None

    def __repr__(self):
        return f"<Identity(id='{self.identity_id}', role='{self.role}')>"
