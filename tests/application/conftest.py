from __future__ import annotations

import pytest

from pos_sync.bootstrap.container import AppContainer


@pytest.fixture
def pos(app: AppContainer) -> AppContainer:
    """Seeded container whose seed uploads have already been pushed."""
    report = app.processor.run_once()
    assert report.failed == 0
    assert app.queue.count() == 0
    return app
