"""TUI Dashboard for holofleet."""

from dataclasses import dataclass

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker, WorkerCancelled, WorkerFailed, WorkerState

from .config import Config
from .executor import Dispatcher, HostStatus
from .models import CommandKind, HostDescriptor, SettledOutcome
from .transport import RemoteRunner


STATUS_ICONS = {
    HostStatus.PENDING: ("…", "dim"),
    HostStatus.RUNNING: ("●", "yellow"),
    HostStatus.SUCCESS: ("✔", "green"),
    HostStatus.FAILED: ("✘", "red"),
    HostStatus.CANCELLED: ("■", "magenta"),
}

FINAL_STATUSES = (HostStatus.SUCCESS, HostStatus.FAILED, HostStatus.CANCELLED)


class HostPanel(Static):
    """A panel displaying progress and outcome for a single host."""

    status: reactive[HostStatus] = reactive(HostStatus.PENDING)

    def __init__(self, host: HostDescriptor, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.id}")
        yield RichLog(id=f"log-{self.id}", markup=True, wrap=True, auto_scroll=True)

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return f"[{color}]{icon}[/] [{color}][bold]{self.host.name}[/bold][/] [{color}]{self.host.address}[/]"

    def watch_status(self, status: HostStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.id}", Label)
        header.update(self._get_header())

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.id}", RichLog)
        if line.startswith("ERROR:"):
            log.write(f"[bold red]{line}[/bold red]")
        elif line.startswith("Success"):
            log.write(f"[green]{line}[/green]")
        else:
            log.write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts settled | {status} | Press 'q' to quit"


@dataclass
class HostOutput(Message):
    """Message for host output."""
    host_name: str
    line: str


@dataclass
class HostStatusChange(Message):
    """Message for host status change."""
    host_name: str
    status: HostStatus


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 6;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: Config,
        kind: CommandKind,
        runner: RemoteRunner | None = None,
        enable_logging: bool = True,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.kind = kind
        self.panels: dict[str, HostPanel] = {}
        self.results: list[SettledOutcome] = []
        self.dispatcher = Dispatcher(
            config,
            runner=runner,
            on_output=self._on_output,
            on_status=self._on_status,
            enable_logging=enable_logging,
        )
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for i, host in enumerate(self.config.hosts):
            panel = HostPanel(host, id=f"panel-{i}")
            self.panels[host.name] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the dispatch when the app mounts."""
        self.title = f"holofleet: {self.kind.value}"
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.config.hosts)

        # Runs on the app's event loop so cancel() reaches the batch
        self._worker = self.run_worker(self._run_dispatch(), exclusive=True)

    async def _run_dispatch(self) -> None:
        self.results = await self.dispatcher.dispatch(self.kind)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == WorkerState.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host_name: str, line: str) -> None:
        self.post_message(HostOutput(host_name, line))

    def _on_status(self, host_name: str, status: HostStatus) -> None:
        self.post_message(HostStatusChange(host_name, status))

    def on_host_output(self, message: HostOutput) -> None:
        if message.host_name in self.panels:
            self.panels[message.host_name].append_output(message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        if message.host_name in self.panels:
            self.panels[message.host_name].status = message.status

        if message.status in FINAL_STATUSES:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Cancel the running batch, collect what settled, and quit."""
        if self._worker and self._worker.is_running:
            self.dispatcher.cancel()
            try:
                await self._worker.wait()
            except (WorkerCancelled, WorkerFailed) as e:
                self.log.warning(f"Dispatch did not finish cleanly: {e!r}")
        self.exit()
