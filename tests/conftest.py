import pytest

from sitewalker.config import Settings


@pytest.fixture
def settings(tmp_path):
    """Settings writing under *tmp_path*, with every wait shortened to nothing."""
    return Settings(
        headless=True,
        screenshots_dir=str(tmp_path / "screenshots"),
        recordings_dir=str(tmp_path / "recordings"),
        rules_dir=str(tmp_path / "site-rules"),
        navigation_timeout_ms=1000,
        network_idle_timeout_ms=10,
        settle_delay_ms=0,
        login_settle_ms=0,
        retry_backoff_ms=0,
        human_delays=False,
    )
