"""
Shared fixtures for the schedule test suite.

Repositories are created under pytest's tmp_path, never in the project data/ dir.
"""

import json
from itertools import count

import pytest

from echeancier.models.schedule import LineItem, QuoteDocument
from echeancier.services.document_service import DocumentService


@pytest.fixture
def line():
    """Factory building LineItem objects with sequential ids."""
    seq = count(1)

    def _make(amount=0.0, line_type="phase", **kwargs):
        kwargs.setdefault("id", f"line-{next(seq)}")
        return LineItem(amount=amount, line_type=line_type, **kwargs)

    return _make


@pytest.fixture
def three_phases(line):
    return [
        line(4000, phase_name="A"),
        line(3000, phase_name="B"),
        line(3000, phase_name="C"),
    ]


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    (d / "settings.json").write_text(json.dumps({"tva_pct": 20, "acompte_pct": 30}), encoding="utf-8")
    return d


@pytest.fixture
def service(data_dir):
    return DocumentService(data_dir)


@pytest.fixture
def stored_quote(service, three_phases):
    doc = service.add_document(
        QuoteDocument(number="DV-2025-0001", total_amount=10000, vat_rate=20)
    )
    for li in three_phases:
        service.add_line_item(doc.id, li)
    return doc
