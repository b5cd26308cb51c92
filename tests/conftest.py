"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from receiptsync.core.config import Settings
from receiptsync.core.dependencies import Components, build_components
from receiptsync.main import create_app
from receiptsync.models import (
    ExtractedText,
    LineItem,
    RemoteReceipt,
    TextSource,
)
from receiptsync.services.api_client import ReceiptAPIClient
from receiptsync.services.field_extractor import FieldExtractor
from receiptsync.services.orchestrator import SyncOrchestrator
from receiptsync.services.reconciliation import ReconciliationEngine
from receiptsync.services.repository import ReceiptRepository
from receiptsync.services.text_acquirer import TextAcquirer

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

    from fastapi import FastAPI

COSTCO_LINES = [
    "COSTCO WHOLESALE",
    "07/10/2025",
    "Receipt #123456",
    "Kirkland Paper Towels   19.99",
    "Subtotal  19.99",
    "Tax  1.65",
    "Total  21.64",
]


def build_pdf(lines: list[str]) -> bytes:
    """Build a minimal one-page PDF with one Helvetica text line per entry."""
    ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        ops.append(f"({escaped}) Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(b"%d 0 obj\n" % number + body + b"\nendobj\n")
    xref_at = out.tell()
    out.write(b"xref\n0 %d\n" % (len(objects) + 1))
    out.write(b"0000000000 65535 f \n")
    for offset in offsets:
        out.write(b"%010d 00000 n \n" % offset)
    out.write(
        b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n"
        % (len(objects) + 1, xref_at)
    )
    return out.getvalue()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at temporary storage."""
    return Settings(
        api_base_url="https://receipts.example.test/api",
        api_session_token="test_session_token",
        database_path=str(tmp_path / "receipts.db"),
        log_dir=str(tmp_path / "logs"),
        debug=True,
    )


@pytest.fixture
def costco_lines() -> list[str]:
    """Text lines of a clean Costco receipt."""
    return list(COSTCO_LINES)


@pytest.fixture
def repository(tmp_path: Path) -> ReceiptRepository:
    """Create a repository backed by a temporary database."""
    return ReceiptRepository(tmp_path / "receipts.db")


@pytest.fixture
def engine(repository: ReceiptRepository) -> ReconciliationEngine:
    """Create a reconciliation engine over the test repository."""
    return ReconciliationEngine(repository)


@pytest.fixture
def make_remote() -> Callable[..., RemoteReceipt]:
    """Factory for server-side receipts."""

    def _make(
        transaction_number: str = "21134300501862307241523",
        **overrides: Any,  # noqa: ANN401
    ) -> RemoteReceipt:
        data: dict[str, Any] = {
            "transaction_number": transaction_number,
            "store_location": "Costco Seattle #113",
            "store_number": "113",
            "transaction_date": "2025-07-10T14:30:00",
            "subtotal": "50.00",
            "tax": "4.13",
            "total": "54.13",
            "parsed_successfully": True,
            "items": [
                {
                    "item_code": "1234567",
                    "description": "KS WATER 40PK",
                    "price": "50.00",
                    "quantity": 1,
                    "total_price": "50.00",
                    "is_taxable": True,
                }
            ],
        }
        data.update(overrides)
        return RemoteReceipt.model_validate(data)

    return _make


@pytest.fixture
def sample_line_items() -> list[LineItem]:
    """Line items for a locally edited receipt."""
    return [
        LineItem(name="Paper Towels", unit_price=Decimal("30.00")),
        LineItem(name="Coffee Beans", unit_price=Decimal("20.00")),
    ]


@pytest.fixture
def mock_api_client(make_remote: Callable[..., RemoteReceipt]) -> Mock:
    """Create a mock receipt API client."""
    mock = Mock(spec=ReceiptAPIClient)
    mock.upload_receipt = AsyncMock(return_value=make_remote("123456"))
    mock.list_receipts = AsyncMock(return_value=[])
    mock.update_receipt = AsyncMock(return_value=None)
    mock.delete_receipt = AsyncMock(return_value=None)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def mock_acquirer(costco_lines: list[str]) -> Mock:
    """Create a mock text acquirer returning the Costco receipt."""
    mock = Mock(spec=TextAcquirer)
    mock.acquire = AsyncMock(
        return_value=ExtractedText(lines=tuple(costco_lines), source=TextSource.DIRECT)
    )
    return mock


@pytest.fixture
def orchestrator(
    mock_acquirer: Mock,
    repository: ReceiptRepository,
    engine: ReconciliationEngine,
    mock_api_client: Mock,
) -> SyncOrchestrator:
    """Create an orchestrator wired to mocks and a real repository."""
    return SyncOrchestrator(
        acquirer=mock_acquirer,
        extractor=FieldExtractor(),
        repository=repository,
        engine=engine,
        api=mock_api_client,
    )


@pytest.fixture
def components(
    test_settings: Settings,
    mock_api_client: Mock,
    mock_acquirer: Mock,
) -> Components:
    """Create application components with mocked collaborators."""
    return build_components(test_settings, api=mock_api_client, acquirer=mock_acquirer)


@pytest.fixture
def app(test_settings: Settings, components: Components) -> FastAPI:
    """Create test FastAPI app."""
    return create_app(settings=test_settings, components=components)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Create test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_pdf() -> Callable[[list[str]], bytes]:
    """Factory for text PDFs."""
    return build_pdf
