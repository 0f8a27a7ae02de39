"""agquota - Main Textual application."""

import re

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from agquota.config import WatcherConfig
from agquota.context import WatcherContext
from agquota.logging_config import configure_logging
from agquota.models import LifecycleEvent, LifecycleKind, ModelQuota, QuotaSnapshot

LOW_QUOTA_PERCENT = 20.0
DEFAULT_STATUS = "🚀 AGQ"

# Short names for the status line
MODEL_ABBREVIATIONS = {
    "Gemini 3 Pro (High)": "Gemini 3 Pro (H)",
    "Gemini 3 Pro (Low)": "Gemini 3 Pro (L)",
    "Gemini 3 Flash": "Gemini 3 Flash",
    "Claude Sonnet 4.5": "Claude S4.5",
    "Claude Sonnet 4.5 (Thinking)": "Claude S4.5T",
    "Claude Opus 4.5 (Thinking)": "Claude O4.5T",
    "GPT-OSS 120B (Medium)": "GPT-OSS (M)",
}

MODEL_SIMPLE_NAMES = {
    "Gemini 3 Pro (High)": "Pro",
    "Gemini 3 Pro (Low)": "Pro",
    "Gemini 3 Flash": "Flash",
    "Claude Sonnet 4.5": "Claude",
    "Claude Sonnet 4.5 (Thinking)": "Claude",
    "Claude Opus 4.5 (Thinking)": "Claude",
    # Shares the Claude quota pool
    "GPT-OSS 120B (Medium)": "Claude",
}


def abbreviate(label: str) -> str:
    """Abbreviate a model label, e.g. 'Claude S4.5' or 'GO120'."""
    if label in MODEL_ABBREVIATIONS:
        return MODEL_ABBREVIATIONS[label]

    parts = []
    for word in filter(None, re.split(r"[\s\-_()]+", label)):
        initial = word[0].upper() if word[0].isalpha() else ""
        digits = re.search(r"\d+", word)
        parts.append(initial + (digits.group(0) if digits else ""))
    return "".join(parts)[:5]


def simple_name(label: str) -> str:
    """Map a model label to its quota family name."""
    if label in MODEL_SIMPLE_NAMES:
        return MODEL_SIMPLE_NAMES[label]
    if "Claude" in label or "GPT" in label:
        return "Claude"
    if "Pro" in label:
        return "Pro"
    if "Flash" in label:
        return "Flash"
    return label.split(" ")[0]


def progress_bar(percentage: float | None, cells: int = 10) -> str:
    """Render a fixed-width bar of remaining quota."""
    filled = round((percentage or 0.0) / 100 * cells)
    filled = max(0, min(cells, filled))
    return "▓" * filled + "░" * (cells - filled)


def status_icon(model: ModelQuota) -> str:
    if model.is_exhausted:
        return "✖"
    if model.remaining_percentage is not None and model.remaining_percentage < LOW_QUOTA_PERCENT:
        return "⚠"
    return "✔"


def format_percentage(percentage: float | None, decimals: int = 0) -> str:
    if percentage is None:
        return "N/A"
    return f"{percentage:.{decimals}f}%"


def status_text(snapshot: QuotaSnapshot, config: WatcherConfig) -> str:
    """Build the one-line summary of pinned models."""
    parts = []
    for model in snapshot.models:
        if model.model_id not in config.pinned_models:
            continue
        name = simple_name(model.label) if config.use_simple_names else abbreviate(model.label)
        parts.append(f"{status_icon(model)} {name}: {format_percentage(model.remaining_percentage)}")
    return "  ".join(parts) if parts else DEFAULT_STATUS


class StatusLine(Static):
    """One-line status mirroring the IDE status bar item."""

    DEFAULT_CSS = """
    StatusLine {
        height: 1;
        padding: 0 1;
        background: $surface;
    }

    StatusLine.-error {
        background: $error;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize StatusLine."""
        kwargs.setdefault("markup", False)
        super().__init__(DEFAULT_STATUS, *args, **kwargs)

    def show_loading(self, annotation: str | None = None) -> None:
        self.remove_class("-error")
        self.update(f"⟳ AGQ {annotation}" if annotation else "⟳ AGQ")

    def show_error(self, message: str) -> None:
        self.add_class("-error")
        self.update(f"✖ AGQ: {message}")

    def show_waiting(self) -> None:
        self.remove_class("-error")
        self.update("AGQ: Antigravity not found. Press c to reconnect.")

    def show_snapshot(self, snapshot: QuotaSnapshot, config: WatcherConfig) -> None:
        self.remove_class("-error")
        self.update(status_text(snapshot, config))


class QuotaTable(Container):
    """Container for the model quota table."""

    DEFAULT_CSS = """
    QuotaTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize QuotaTable."""
        super().__init__(*args, **kwargs)
        self._current_ids: set[str] = set()

    def compose(self) -> ComposeResult:
        """Compose the quota table."""
        yield DataTable(id="quota-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#quota-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PIN", key="pin", width=3)
        table.add_column("S", key="status", width=2)
        table.add_column("Model", key="label", width=30)
        table.add_column("Quota", key="bar", width=10)
        table.add_column("Left", key="percent", width=7)
        table.add_column("Resets in", key="reset")

    @property
    def selected_model_id(self) -> str | None:
        """Model id of the highlighted row, if any."""
        table = self.query_one("#quota-table", DataTable)
        if table.row_count == 0:
            return None
        row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        return row_key.value

    def update_models(self, snapshot: QuotaSnapshot, config: WatcherConfig) -> None:
        """
        Update the table from a snapshot.

        Existing rows are updated in place; rows of models that disappeared
        are removed.
        """
        table = self.query_one("#quota-table", DataTable)
        new_ids = {model.model_id for model in snapshot.models}

        for model_id in self._current_ids - new_ids:
            try:
                table.remove_row(model_id)
            except Exception:
                pass  # Row may not exist

        for model in snapshot.models:
            cells = self._cells(model, model.model_id in config.pinned_models)
            if model.model_id in self._current_ids:
                self._update_row(table, model.model_id, cells)
            else:
                self._add_row(table, model.model_id, cells)

        self._current_ids = new_ids

    def _cells(self, model: ModelQuota, pinned: bool) -> dict[str, str]:
        return {
            "pin": "●" if pinned else "○",
            "status": status_icon(model),
            "label": model.label,
            "bar": progress_bar(model.remaining_percentage),
            "percent": format_percentage(model.remaining_percentage, decimals=1),
            "reset": model.time_until_reset_formatted,
        }

    def _update_row(self, table: DataTable, row_key: str, cells: dict[str, str]) -> None:
        try:
            for column, value in cells.items():
                table.update_cell(row_key, column, value)
        except Exception:
            pass  # Row may have been removed

    def _add_row(self, table: DataTable, row_key: str, cells: dict[str, str]) -> None:
        try:
            table.add_row(*cells.values(), key=row_key)
        except Exception:
            pass  # Row may already exist


class QuotaWatcherApp(App):
    """Main agquota application."""

    TITLE = "agquota"
    SUB_TITLE = "Antigravity Quota Watcher"

    CSS = """
    Screen {
        layout: vertical;
    }

    #status-line {
        dock: top;
    }

    #credits {
        height: auto;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("c", "reconnect", "Reconnect"),
        ("p", "pin", "Pin"),
        ("s", "simple_names", "Simple names"),
    ]

    def __init__(self, context: WatcherContext | None = None) -> None:
        """Initialize the QuotaWatcherApp."""
        super().__init__()
        self._watcher = context or WatcherContext()
        self._last_snapshot: QuotaSnapshot | None = None
        self._unsubscribers = []

    @property
    def watcher(self) -> WatcherContext:
        return self._watcher

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield StatusLine(id="status-line")
        yield QuotaTable()
        yield Static("", id="credits", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        """Subscribe to the context and start discovery."""
        watcher = self._watcher
        self._unsubscribers = [
            watcher.poller.on_update(self._on_snapshot),
            watcher.controller.on_lifecycle(self._on_lifecycle),
            watcher.config.on_change(self._on_config_change),
        ]
        watcher.start()

    def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._watcher.close()

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        try:
            status = self.query_one("#status-line", StatusLine)
            if event.kind is LifecycleKind.LOADING:
                status.show_loading(event.message)
            elif event.kind is LifecycleKind.ERROR:
                status.show_error(event.message or "Unknown error")
            elif event.kind is LifecycleKind.WAITING:
                status.show_waiting()
            elif event.kind is LifecycleKind.ACTIVE:
                status.update(DEFAULT_STATUS)
        except Exception:
            pass  # Widget not mounted yet

    def _on_snapshot(self, snapshot: QuotaSnapshot) -> None:
        self._last_snapshot = snapshot
        self._render_snapshot()

    def _on_config_change(self, config: WatcherConfig) -> None:
        self._render_snapshot()

    def _render_snapshot(self) -> None:
        snapshot = self._last_snapshot
        if snapshot is None:
            return
        config = self._watcher.config.get_config()
        try:
            self.query_one("#status-line", StatusLine).show_snapshot(snapshot, config)
            self.query_one(QuotaTable).update_models(snapshot, config)
            credits = self.query_one("#credits", Static)
            pc = snapshot.prompt_credits
            if config.show_prompt_credits and pc is not None:
                credits.update(
                    f"Prompt credits: {pc.available:,} / {pc.monthly:,} "
                    f"{progress_bar(pc.remaining_percentage)} {pc.remaining_percentage:.1f}%"
                )
            else:
                credits.update("")
        except Exception:
            pass  # The app must never crash on a late update

    def action_refresh(self) -> None:
        """Fetch quota now."""
        if not self._watcher.controller.is_connected:
            self.notify("Not connected to Antigravity yet")
            return
        self.notify("Refreshing Quota...")
        self.run_worker(self._watcher.refresh(), group="refresh")

    def action_reconnect(self) -> None:
        """Restart discovery from the first attempt."""
        self.notify("Reconnecting to Antigravity process...")
        self._watcher.reconnect()

    def action_pin(self) -> None:
        """Toggle the highlighted model in the status line."""
        try:
            model_id = self.query_one(QuotaTable).selected_model_id
        except Exception:
            model_id = None
        if model_id is None:
            self.notify("No model data")
            return
        self._watcher.config.toggle_pinned_model(model_id)

    def action_simple_names(self) -> None:
        config = self._watcher.config.toggle_simple_names()
        self.notify(f"Simple names: {'ON' if config.use_simple_names else 'OFF'}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._watcher.close()
        self.exit()


def main() -> None:
    """Entry point for agquota application."""
    configure_logging()
    app = QuotaWatcherApp()
    app.run()


if __name__ == "__main__":
    main()
