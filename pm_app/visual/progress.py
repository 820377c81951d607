"""Progress banner for long-running fetches on Streamlit pages."""

from __future__ import annotations

import streamlit as st


class ProgressReporter:
    """Banner + progress bar; ``callback`` matches SnapshotService progress calls."""

    def __init__(self, title: str):
        self._container = st.container()
        self._container.info(title)
        self._message = self._container.empty()
        self._bar = self._container.progress(0.0)
        self._finalized = False

    def callback(self, message: str, current: int | None = None, total: int | None = None) -> None:
        if self._finalized:
            return
        self._message.write(message)
        if total:
            self._bar.progress(min(max((current or 0) / total, 0.0), 1.0))

    def complete(self, message: str) -> None:
        if self._finalized:
            return
        self._bar.progress(1.0)
        self._container.success(message)
        self._finalized = True

    def error(self, message: str) -> None:
        if self._finalized:
            return
        self._container.error(message)
        self._finalized = True
