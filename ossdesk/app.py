from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from time import monotonic
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Static

from .auth import LoginGate, encrypt_user_file, load_users
from .cache import ListingCache
from .crypto import CredentialCodec
from .errors import NotConnectedError, OssDeskError, ProviderError, ValidationError
from .kvstore import JsonFileStore, MemoryStore
from .profiles import Profile, ProfileStore
from .session import SessionManager, SessionState
from .settings import Settings, config_base_dir, load_settings
from .storage import Boto3ClientFactory, ObjectMetadata, StorageHandle

log = logging.getLogger(__name__)
console = Console()

ONE_MB = 1024**2
HUNDRED_MB = 100 * ONE_MB
ONE_GB = 1024**3
TEN_GB = 10 * ONE_GB
ESC_QUIT_WINDOW_SECONDS = 1.0


@dataclass(frozen=True)
class RowInfo:
    kind: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


def format_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} PB"


def size_style(size: int) -> str:
    if size < ONE_MB:
        return "green"
    if size < HUNDRED_MB:
        return "#ffd700"
    if size < ONE_GB:
        return "#ff8c00"
    if size < TEN_GB:
        return "red"
    return "bold red"


def format_time(value: Optional[datetime]) -> str:
    if not value:
        return ""
    return value.strftime("%Y-%m-%d %H:%M")


def display_segment(full_prefix: str, parent: str) -> str:
    name = full_prefix[len(parent) :] if parent else full_prefix
    return name.strip("/")


def parent_prefix(prefix: str) -> str:
    trimmed = prefix.rstrip("/")
    if "/" not in trimmed:
        return ""
    return trimmed.rsplit("/", 1)[0] + "/"


def kind_from_name(name: str) -> str:
    suffixes = PurePosixPath(name).suffixes
    if suffixes and suffixes[-1].lower() == ".gz":
        suffixes = suffixes[:-1]
    if not suffixes:
        return "file"
    ext = suffixes[-1].lstrip(".").lower()
    return ext or "file"


def split_listing(
    prefix: str, items: Sequence[ObjectMetadata]
) -> tuple[list[str], list[ObjectMetadata]]:
    """Fold a flat listing into the folders and files directly under ``prefix``."""
    folders: list[str] = []
    files: list[ObjectMetadata] = []
    for item in items:
        if not item.name.startswith(prefix):
            continue
        rest = item.name[len(prefix) :]
        if not rest:
            continue
        if "/" in rest:
            folder = f"{prefix}{rest.split('/', 1)[0]}/"
            if folder not in folders:
                folders.append(folder)
            continue
        files.append(item)
    return folders, files


def profile_label(profile: Optional[Profile]) -> str:
    if profile is None:
        return "no profile"
    return profile.name or profile.id


class PathDialog(ModalScreen[Optional[str]]):
    BINDINGS = [
        ("escape", "cancel", "Cancel"),
    ]
    CSS = """
    PathDialog {
        align: center middle;
    }

    #path-dialog {
        width: 60;
        max-width: 80;
        min-width: 40;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $panel;
        color: $text;
    }

    #path-actions {
        width: 100%;
        align: center middle;
        margin-top: 1;
        height: auto;
    }

    #path-ok {
        margin-left: 2;
    }
    """

    def __init__(self, label: str, default_value: str, ok_label: str) -> None:
        super().__init__()
        self._label = label
        self._default_value = default_value
        self._ok_label = ok_label

    def compose(self) -> ComposeResult:
        with Vertical(id="path-dialog"):
            yield Static(self._label)
            yield Input(value=self._default_value, id="path-value")
            with Horizontal(id="path-actions"):
                yield Button("Cancel", id="path-cancel", compact=True)
                yield Button(self._ok_label, id="path-ok", compact=True)

    def on_mount(self) -> None:
        self.query_one("#path-value", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "path-cancel":
            self.dismiss(None)
        elif event.button.id == "path-ok":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        value = self.query_one("#path-value", Input).value.strip()
        if not value:
            return
        self.dismiss(value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ConfirmDialog(ModalScreen[bool]):
    BINDINGS = [("escape", "cancel", "Cancel"), ("y", "confirm", "Yes")]
    CSS = """
    ConfirmDialog {
        align: center middle;
    }

    #confirm-dialog {
        width: 56;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $panel;
    }

    #confirm-actions {
        width: 100%;
        align: center middle;
        margin-top: 1;
        height: auto;
    }

    #confirm-yes {
        margin-left: 2;
    }
    """

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Static(self._message, markup=False)
            with Horizontal(id="confirm-actions"):
                yield Button("Cancel", id="confirm-no", compact=True)
                yield Button("Delete", id="confirm-yes", variant="error", compact=True)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm-yes")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


class ProfileSelectDialog(ModalScreen[Optional[str]]):
    BINDINGS = [("escape", "cancel", "Cancel")]

    CSS = """
    ProfileSelectDialog {
        align: right top;
        background: transparent;
        padding: 3 2 0 0;
    }

    #profile-dialog {
        width: 36;
        max-width: 48;
        min-width: 18;
        height: auto;
        padding: 1;
        border: round $panel;
        background: $panel;
        color: $text;
    }

    #profile-title {
        width: 100%;
        color: $text-muted;
        margin-bottom: 1;
    }

    .profile-option {
        width: 100%;
        border: none;
        background: transparent;
        color: $text;
    }
    """

    def __init__(
        self, options: list[tuple[str, str]], current_value: Optional[str]
    ) -> None:
        super().__init__()
        self._options = options
        self._current_value = current_value
        self._button_values: dict[str, str] = {}

    def compose(self) -> ComposeResult:
        with Vertical(id="profile-dialog"):
            yield Static("Choose profile", id="profile-title")
            for index, (label, value) in enumerate(self._options):
                marker = "• " if value == self._current_value else "  "
                button_id = f"profile-option-{index}"
                self._button_values[button_id] = value
                yield Button(f"{marker}{label}", id=button_id, classes="profile-option")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        value = self._button_values.get(event.button.id or "")
        if value is None:
            return
        self.dismiss(value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class LoginScreen(ModalScreen[bool]):
    CSS = """
    LoginScreen {
        align: center middle;
    }

    #login-dialog {
        width: 48;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $panel;
    }

    #login-error {
        color: $error;
        height: auto;
    }
    """

    def __init__(self, gate: LoginGate) -> None:
        super().__init__()
        self._gate = gate

    def compose(self) -> ComposeResult:
        with Vertical(id="login-dialog"):
            yield Static("Sign in")
            yield Input(placeholder="Username", id="login-username")
            yield Input(placeholder="Password", password=True, id="login-password")
            yield Static("", id="login-error")
            yield Button("Login", id="login-submit", compact=True)

    def on_mount(self) -> None:
        self.query_one("#login-username", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "login-submit":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "login-username":
            self.query_one("#login-password", Input).focus()
            return
        self._submit()

    def _submit(self) -> None:
        username = self.query_one("#login-username", Input).value.strip()
        password = self.query_one("#login-password", Input).value
        result = self._gate.login(username, password)
        if result.success:
            self.dismiss(True)
            return
        self.query_one("#login-error", Static).update(result.message or "")


class BucketBrowser(App):
    CSS = """
    #status-bar {
        height: 3;
        padding: 0 1;
        border: round $panel;
        background: $surface;
        content-align: left middle;
    }

    #listing {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "confirm_quit", "Quit x2"),
        ("r", "refresh", "Refresh"),
        ("p", "choose_profile", "Profile"),
        ("backspace", "up", "Up"),
        ("u", "upload", "Upload"),
        ("d", "delete", "Delete"),
        ("g", "download", "Download"),
    ]

    def __init__(
        self,
        session: SessionManager,
        login_gate: Optional[LoginGate] = None,
        max_keys: int = 100,
        download_dir: Optional[Path] = None,
    ) -> None:
        super().__init__()
        self.session = session
        self.login_gate = login_gate
        self.max_keys = max_keys
        self.download_dir = download_dir or Path.cwd()
        self.prefix = ""
        self._row_keys: list[object] = []
        self._row_info: dict[object, RowInfo] = {}
        self._listing_token = 0
        self._quit_escape_deadline = 0.0
        self._unsubscribe = self.session.subscribe(self._on_handle_changed)

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield DataTable(id="listing")
        yield Footer()

    async def on_mount(self) -> None:
        self.status_bar = self.query_one("#status-bar", Static)
        self.table = self.query_one("#listing", DataTable)
        self.table.add_columns("Name", "Kind", "Size", "Modified")
        self.table.cursor_type = "row"
        self.table.zebra_stripes = True
        self.set_focus(self.table)
        self._update_status()
        if self.login_gate is not None and self.login_gate.restore() is None:
            self.push_screen(LoginScreen(self.login_gate), self._after_login)
            return
        self.run_worker(self._connect_flow(), exclusive=True)

    def on_unmount(self) -> None:
        self._unsubscribe()

    def _after_login(self, success: Optional[bool]) -> None:
        if success:
            self.run_worker(self._connect_flow(), exclusive=True)

    # session wiring

    def _on_handle_changed(self, handle: Optional[StorageHandle]) -> None:
        self.prefix = ""
        self._listing_token += 1
        if hasattr(self, "table"):
            self._clear_table()
            self._update_status()

    def _update_status(self) -> None:
        if not hasattr(self, "status_bar"):
            return
        profile = self.session.active_profile
        state = self.session.state
        text = Text()
        text.append(profile_label(profile), style="bold")
        if profile is not None and profile.bucket:
            text.append(f"  {profile.bucket}/{self.prefix}")
        state_style = {
            SessionState.CONNECTED: "green",
            SessionState.CONNECTING: "#ffd700",
            SessionState.FAILED: "red",
        }.get(state, "dim")
        text.append(f"  [{state.value}]", style=state_style)
        if state is SessionState.FAILED and self.session.last_error:
            text.append(f"  {self.session.last_error}", style="red")
        self.status_bar.update(text)

    async def _connect_flow(self) -> None:
        try:
            await self.session.connect()
        except ProviderError as exc:
            self.notify(str(exc), severity="error")
        self._update_status()
        if self.session.is_connected:
            await self.refresh_listing()

    async def _switch_flow(self, profile_id: str) -> None:
        try:
            await self.session.switch_active(profile_id)
        except OssDeskError as exc:
            self.notify(str(exc), severity="error")
        self._update_status()
        if self.session.is_connected:
            await self.refresh_listing()
        else:
            profile = self.session.active_profile
            if profile is not None and not profile.is_complete:
                self.notify(
                    f"Profile '{profile_label(profile)}' is missing "
                    f"{', '.join(profile.missing_fields())}",
                    severity="warning",
                )

    # listing

    async def refresh_listing(self, force: bool = False) -> None:
        self._listing_token += 1
        token = self._listing_token
        try:
            items = await self.session.list(
                self.prefix, self.max_keys, allow_cache=not force
            )
        except NotConnectedError:
            self._clear_table()
            return
        except ProviderError as exc:
            self.notify(str(exc), severity="error")
            return
        if token != self._listing_token:
            return
        self._render_listing(items)

    def _render_listing(self, items: Sequence[ObjectMetadata]) -> None:
        self._clear_table()
        folders, files = split_listing(self.prefix, items)
        if self.prefix:
            self._add_row("..", "dir", "", "", RowInfo(kind="parent", key=self.prefix))
        for folder in folders:
            self._add_row(
                display_segment(folder, self.prefix),
                "dir",
                "",
                "",
                RowInfo(kind="prefix", key=folder),
            )
        for item in files:
            self._add_row(
                display_segment(item.name, self.prefix),
                kind_from_name(item.name),
                format_size(item.size),
                format_time(item.last_modified),
                RowInfo(
                    kind="object",
                    key=item.name,
                    size=item.size,
                    last_modified=item.last_modified,
                ),
            )
        self._update_status()

    def _clear_table(self) -> None:
        if hasattr(self, "table"):
            self.table.clear()
        self._row_keys = []
        self._row_info = {}

    def _add_row(
        self, name: str, kind: str, size: str, modified: str, info: RowInfo
    ) -> None:
        size_text = Text(size, justify="right")
        if info.size is not None:
            size_text.stylize(Style.parse(size_style(info.size)))
        row_key = self.table.add_row(Text(name), Text(kind), size_text, Text(modified))
        self._row_keys.append(row_key)
        self._row_info[row_key] = info

    def _row_info_for_cursor(self) -> Optional[RowInfo]:
        row = self.table.cursor_row
        if row is None or row < 0 or row >= len(self._row_keys):
            return None
        return self._row_info.get(self._row_keys[row])

    # actions

    async def action_refresh(self) -> None:
        if not self.session.is_connected:
            await self._connect_flow()
            return
        await self.refresh_listing(force=True)

    def action_confirm_quit(self) -> None:
        now = monotonic()
        if now <= self._quit_escape_deadline:
            self._quit_escape_deadline = 0.0
            self.exit()
            return
        self._quit_escape_deadline = now + ESC_QUIT_WINDOW_SECONDS
        self.notify("Press Esc again within 1 second to quit.", severity="warning")

    async def action_open(self) -> None:
        info = self._row_info_for_cursor()
        if info is None:
            return
        if info.kind == "parent":
            await self.action_up()
        elif info.kind == "prefix":
            self.prefix = info.key
            await self.refresh_listing()

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        await self.action_open()

    async def action_up(self) -> None:
        if not self.prefix:
            return
        self.prefix = parent_prefix(self.prefix)
        await self.refresh_listing()

    def action_choose_profile(self) -> None:
        profiles = self.session.store.list()
        if not profiles:
            self.notify("No profiles configured. Add one with `ossdesk profiles add`.")
            return
        options = [(profile_label(profile), profile.id) for profile in profiles]

        def chosen(value: Optional[str]) -> None:
            if value is None:
                return
            if value == self.session.store.active_id and self.session.is_connected:
                return
            self.run_worker(self._switch_flow(value), exclusive=True)

        self.push_screen(
            ProfileSelectDialog(options, self.session.store.active_id), chosen
        )

    def action_upload(self) -> None:
        def chosen(value: Optional[str]) -> None:
            if value is None:
                return
            self.run_worker(self._upload_flow(Path(value).expanduser()), exclusive=True)

        self.push_screen(PathDialog("Upload local file:", "", "Upload"), chosen)

    async def _upload_flow(self, source: Path) -> None:
        if not source.is_file():
            self.notify(f"Not a file: {source}", severity="error")
            return
        destination = f"{self.prefix}{source.name}"
        try:
            await self.session.upload(source, destination)
        except OssDeskError as exc:
            self.notify(str(exc), severity="error")
            return
        self.notify(f"Uploaded {destination}")
        await self.refresh_listing()

    def action_delete(self) -> None:
        info = self._row_info_for_cursor()
        if info is None or info.kind != "object":
            return

        def confirmed(value: Optional[bool]) -> None:
            if value:
                self.run_worker(self._delete_flow(info.key), exclusive=True)

        self.push_screen(ConfirmDialog(f"Delete {info.key}?"), confirmed)

    async def _delete_flow(self, key: str) -> None:
        try:
            await self.session.delete(key)
        except OssDeskError as exc:
            self.notify(str(exc), severity="error")
            return
        self.notify(f"Deleted {key}")
        await self.refresh_listing()

    def action_download(self) -> None:
        info = self._row_info_for_cursor()
        if info is None or info.kind != "object":
            return

        def chosen(value: Optional[str]) -> None:
            if value is None:
                return
            self.run_worker(
                self._download_flow(info.key, Path(value).expanduser()),
                exclusive=True,
            )

        self.push_screen(
            PathDialog("Download to:", str(self.download_dir), "Download"), chosen
        )

    async def _download_flow(self, key: str, destination: Path) -> None:
        try:
            target = await self.session.download(key, destination=destination)
        except OssDeskError as exc:
            self.notify(str(exc), severity="error")
            return
        self.notify(f"Saved {target}")


# composition root


def configure_logging(level: str) -> None:
    logger = logging.getLogger("ossdesk")
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level, logging.WARNING))
    logger.propagate = False


def build_session(
    settings: Settings, config_dir: Path, ephemeral: bool = False
) -> SessionManager:
    kv = MemoryStore() if ephemeral else JsonFileStore(config_dir / "state.json")
    store = ProfileStore(kv, CredentialCodec())
    cache = ListingCache(ttl_seconds=settings.cache_ttl_seconds)
    factory = Boto3ClientFactory(default_region=settings.default_region)
    return SessionManager(store, factory, cache)


def build_login_gate(settings: Settings, config_dir: Path) -> LoginGate:
    return LoginGate(
        load_users(config_dir / "users.json"),
        JsonFileStore(config_dir / "state.json"),
        session_hours=settings.session_hours,
    )


async def _connected(session: SessionManager) -> SessionManager:
    await session.connect()
    if session.is_connected:
        return session
    profile = session.active_profile
    if profile is None:
        raise NotConnectedError("No active profile. Add one with `ossdesk profiles add`.")
    raise NotConnectedError(
        f"Profile '{profile_label(profile)}' is missing "
        f"{', '.join(profile.missing_fields())}"
    )


def _profile_fields(args: argparse.Namespace) -> dict[str, str]:
    fields: dict[str, str] = {}
    for field in (
        "name",
        "region",
        "access_key_id",
        "access_key_secret",
        "bucket",
        "endpoint",
    ):
        value = getattr(args, field, None)
        if value is not None:
            fields[field] = value
    return fields


def _print_profiles(session: SessionManager) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Region")
    table.add_column("Bucket")
    table.add_column("Endpoint")
    table.add_column("Complete")
    active_id = session.store.active_id
    for profile in session.store.list():
        table.add_row(
            "*" if profile.id == active_id else "",
            profile.id,
            profile.name,
            profile.region,
            profile.bucket,
            profile.endpoint or "",
            "yes" if profile.is_complete else "no",
        )
    console.print(table)


async def _run_profiles_command(
    session: SessionManager, args: argparse.Namespace
) -> int:
    action = args.profiles_command
    if action in (None, "list"):
        _print_profiles(session)
        return 0
    if action == "add":
        profile_id = await session.add_profile(_profile_fields(args), connect=False)
        console.print(f"Added profile {profile_id}")
        return 0
    if action == "update":
        if session.store.get(args.id) is None:
            raise ValidationError(f"No profile with id '{args.id}'")
        await session.reconfigure_active(args.id, _profile_fields(args))
        console.print(f"Updated profile {args.id}")
        return 0
    if action == "copy":
        source = session.store.get(args.id)
        if source is None:
            raise ValidationError(f"No profile with id '{args.id}'")
        fields = source.to_dict()
        fields["name"] = args.name or f"{source.name} - copy"
        profile_id = await session.add_profile(fields, connect=False)
        console.print(f"Copied profile {args.id} to {profile_id}")
        return 0
    if action == "remove":
        if session.store.get(args.id) is None:
            raise ValidationError(f"No profile with id '{args.id}'")
        await session.delete_profile(args.id)
        console.print(f"Removed profile {args.id}; active is {session.store.active_id}")
        return 0
    if action == "switch":
        state = await session.switch_active(args.id)
        console.print(f"Active profile {args.id} ({state.value})")
        return 0
    if action == "export":
        payload = json.dumps(session.store.export(), indent=2, ensure_ascii=False)
        if args.file:
            Path(args.file).write_text(payload, encoding="utf-8")
        else:
            console.print_json(payload)
        return 0
    if action == "import":
        try:
            payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ValidationError(f"Cannot read {args.file}: {exc}") from exc
        if isinstance(payload, dict):
            records = payload.get("profiles", [])
            preferred = args.active or payload.get("active_id")
        else:
            records = payload
            preferred = args.active
        if not isinstance(records, list):
            raise ValidationError(f"{args.file} does not contain a list of profiles")
        session.store.import_batch(
            [record for record in records if isinstance(record, dict)], preferred
        )
        console.print(f"Imported {len(session.store)} profiles")
        return 0
    if action == "clear":
        await session.clear_profiles()
        console.print("Removed all profiles")
        return 0
    raise ValidationError(f"Unknown profiles command: {action}")


async def _run_bucket_command(
    session: SessionManager, args: argparse.Namespace, settings: Settings
) -> int:
    await _connected(session)
    if args.command == "ls":
        max_keys = args.max_keys or settings.default_max_keys
        items = await session.list(args.prefix, max_keys, allow_cache=not args.refresh)
        table = Table(show_header=True, header_style="bold")
        table.add_column("Name")
        table.add_column("Size", justify="right")
        table.add_column("Modified")
        for item in items:
            table.add_row(
                item.name,
                Text(format_size(item.size), style=size_style(item.size)),
                format_time(item.last_modified),
            )
        console.print(table)
        return 0
    if args.command == "put":
        source = Path(args.local).expanduser()
        if not source.is_file():
            raise ValidationError(f"Not a file: {source}")
        result = await session.upload(source, args.key or source.name)
        console.print(f"Uploaded {result.name}")
        return 0
    if args.command == "rm":
        result = await session.delete(args.key)
        console.print(f"Deleted {result.name}")
        return 0
    if args.command == "url":
        console.print(session.get_signed_url(args.key, args.expires), soft_wrap=True)
        return 0
    if args.command == "get":
        target = await session.download(args.key, args.name, args.dest)
        console.print(f"Saved {target}")
        return 0
    raise ValidationError(f"Unknown command: {args.command}")


def _run_browser_command(
    settings: Settings, config_dir: Path, ephemeral: bool = False
) -> int:
    session = build_session(settings, config_dir, ephemeral)
    gate = build_login_gate(settings, config_dir) if settings.require_login else None
    app = BucketBrowser(session, login_gate=gate, max_keys=settings.default_max_keys)
    app.run()
    return 0


def _add_profile_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name")
    parser.add_argument("--region", help="e.g. oss-cn-hangzhou or us-east-1")
    parser.add_argument("--access-key-id", dest="access_key_id")
    parser.add_argument("--access-key-secret", dest="access_key_secret")
    parser.add_argument("--bucket")
    parser.add_argument("--endpoint", help="Custom S3-compatible endpoint URL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ossdesk",
        description="Object storage browser with saved connection profiles",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory holding config.json, state.json and users.json",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument(
        "--ephemeral",
        action="store_true",
        help="Keep profiles in memory only for this run",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("browse", help="Open the interactive browser (default)")

    profiles = commands.add_parser("profiles", help="Manage connection profiles")
    profile_commands = profiles.add_subparsers(dest="profiles_command")
    profile_commands.add_parser("list", help="List profiles")
    add = profile_commands.add_parser("add", help="Add a profile and make it active")
    _add_profile_arguments(add)
    update = profile_commands.add_parser("update", help="Edit fields of a profile")
    update.add_argument("id")
    _add_profile_arguments(update)
    copy = profile_commands.add_parser(
        "copy", help="Duplicate a profile under a new id and make it active"
    )
    copy.add_argument("id")
    copy.add_argument("--name", help="Name of the copy")
    remove = profile_commands.add_parser("remove", help="Delete a profile")
    remove.add_argument("id")
    switch = profile_commands.add_parser("switch", help="Make a profile active")
    switch.add_argument("id")
    export = profile_commands.add_parser("export", help="Write profiles as JSON")
    export.add_argument("file", nargs="?")
    import_ = profile_commands.add_parser("import", help="Replace profiles from JSON")
    import_.add_argument("file")
    import_.add_argument("--active", help="Original id of the profile to activate")
    profile_commands.add_parser("clear", help="Delete every profile")

    ls = commands.add_parser("ls", help="List objects in the active bucket")
    ls.add_argument("prefix", nargs="?", default="")
    ls.add_argument("--max-keys", type=int)
    ls.add_argument("--refresh", action="store_true", help="Bypass the listing cache")

    put = commands.add_parser("put", help="Upload a local file")
    put.add_argument("local")
    put.add_argument("key", nargs="?")

    rm = commands.add_parser("rm", help="Delete an object")
    rm.add_argument("key")

    url = commands.add_parser("url", help="Print a signed download URL")
    url.add_argument("key")
    url.add_argument("--expires", type=int, default=3600)

    get = commands.add_parser("get", help="Download an object through a signed URL")
    get.add_argument("key")
    get.add_argument("--dest", type=Path)
    get.add_argument("--name")

    encrypt = commands.add_parser(
        "encrypt-passwords", help="Encrypt plaintext passwords in a users file"
    )
    encrypt.add_argument("file", nargs="?", type=Path)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config_dir = args.config_dir or config_base_dir()
    try:
        settings = load_settings(config_dir / "config.json")
        configure_logging(settings.effective_log_level(args.log_level))
        if args.command in (None, "browse"):
            return _run_browser_command(settings, config_dir, ephemeral=args.ephemeral)
        if args.command == "encrypt-passwords":
            path = args.file or config_dir / "users.json"
            count = encrypt_user_file(path)
            console.print(f"Encrypted {count} passwords in {path}")
            return 0
        session = build_session(settings, config_dir, args.ephemeral)
        if args.command == "profiles":
            return asyncio.run(_run_profiles_command(session, args))
        return asyncio.run(_run_bucket_command(session, args, settings))
    except OssDeskError as exc:
        console.print(f"[red]Error:[/red] {exc}", markup=True, highlight=False)
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
