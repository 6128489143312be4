from __future__ import annotations

from unittest.mock import Mock, patch

from src.services.progress import RowProgress, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


def test_bar_created_only_on_tty():
    with patch("src.services.progress.is_tty_enabled", return_value=True), patch(
        "src.services.progress.tqdm"
    ) as mock_tqdm:
        progress = RowProgress(5, description="Validating Device Metadata")
    mock_tqdm.assert_called_once_with(
        total=5, desc="Validating Device Metadata", unit="row", leave=False, ncols=80, ascii=True
    )
    assert progress.enabled


def test_no_bar_without_tty():
    with patch("src.services.progress.is_tty_enabled", return_value=False), patch(
        "src.services.progress.tqdm"
    ) as mock_tqdm:
        progress = RowProgress(5)
        progress.advance(True)
    mock_tqdm.assert_not_called()
    assert progress.pbar is None and progress.valid == 1


def test_no_bar_for_empty_sheet():
    with patch("src.services.progress.is_tty_enabled", return_value=True), patch(
        "src.services.progress.tqdm"
    ) as mock_tqdm:
        RowProgress(0)
    mock_tqdm.assert_not_called()


def test_advance_counts_and_closes():
    bar = Mock()
    with patch("src.services.progress.is_tty_enabled", return_value=True), patch(
        "src.services.progress.tqdm", return_value=bar
    ):
        with RowProgress(3) as progress:
            progress.advance(success=True)
            progress.advance(success=False)
    assert (progress.valid, progress.invalid) == (1, 1)
    assert bar.update.call_count == 2
    bar.set_postfix.assert_called_once_with(invalid=1)
    bar.close.assert_called_once()
    assert progress.pbar is None
