from sqlalchemy import Boolean, Column, Integer, String, TIMESTAMP, func
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression
from reseller_engine.db.base import Base

PANEL_TYPES = ("marzban", "marzneshin", "xui", "eylandoo")


class Panel(Base):
    __tablename__ = "panels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    panel_type = Column(String(32), nullable=False, server_default="marzban")
    api_url = Column(String(255), nullable=False)
    admin_username = Column(String(255), nullable=True)
    encrypted_admin_password = Column(String(512), nullable=True)  # Fernet token
    encrypted_api_token = Column(String(1024), nullable=True)  # Eylandoo API key, Fernet token
    node_hostname = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=expression.true())
    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    resellers = relationship(
        "Reseller",
        secondary="reseller_panel_accesses",
        back_populates="panels",
        lazy="selectin"
    )
