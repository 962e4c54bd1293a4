"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Config env par défaut
os.environ.setdefault("DATABASE_URL", "sqlite:///./lockerpay_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from app.main import app  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import Base, Payment, PaymentStatus, Reservation  # noqa: E402

DB_PATH = Path("./lockerpay_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parents[1] / "alembic"))
    cfg.attributes["sqlalchemy.url"] = os.environ["DATABASE_URL"]
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


# --- (1) Reset DB fichier au début de la session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Construire le schéma via Alembic uniquement
_run_migrations()


@pytest.fixture(autouse=True)
def _clean_tables() -> Iterator[None]:
    """Settlement runs commit for real, so wipe every table after each test."""

    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return TestingSessionLocal


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['ADMIN_API_KEY']}"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_payment(db_session: Session) -> Callable[..., Payment]:
    """Factory persisting a payment; defaults to a settled-eligible SUCCESS row."""

    def _factory(
        *,
        merchant_id: str = "store-1",
        amount: int = 10000,
        status: PaymentStatus = PaymentStatus.SUCCESS,
        paid_at: datetime | None = datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
        reservation_id: str | None = None,
        is_settled: bool = False,
        order_id: str | None = None,
    ) -> Payment:
        payment = Payment(
            merchant_id=merchant_id,
            user_id=f"user-{uuid4().hex[:6]}",
            reservation_id=reservation_id,
            amount_total=amount,
            gateway_order_id=order_id or f"ORDER_{uuid4().hex[:12].upper()}",
            status=status,
            paid_at=paid_at if status == PaymentStatus.SUCCESS else None,
            is_settled=is_settled,
        )
        db_session.add(payment)
        db_session.commit()
        return payment

    return _factory


@pytest.fixture
def make_reservation(db_session: Session) -> Callable[..., Reservation]:
    def _factory(status: str = "pending", payment_status: str = "pending") -> Reservation:
        reservation = Reservation(id=f"res-{uuid4().hex[:8]}", status=status, payment_status=payment_status)
        db_session.add(reservation)
        db_session.commit()
        return reservation

    return _factory
