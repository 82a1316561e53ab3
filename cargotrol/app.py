from __future__ import annotations

import base64
from datetime import datetime
import json
import sys
from typing import Any

import streamlit as st

from cargotrol import __version__ as APP_VERSION
from cargotrol.attachments import AttachmentResolver, PreviewKind, classify_attachment, describe_attachment_kind
from cargotrol.blobs import BlobStorageClient, ObjectUrlRegistry, ensure_filename_extension
from cargotrol.config import AppConfig, load_app_config
from cargotrol.email_extraction import EmailExtractionClient, ExtractionError
from cargotrol.exchange import WorkbookImportError, export_container, read_import_rows
from cargotrol.mapper import join_awaiting
from cargotrol.models import (
    ATTACHMENT_FIELDS,
    ATTACHMENT_FILE_STEMS,
    AWAITING_NONE,
    AWAITING_OPTIONS,
    STATUS_OPTIONS,
    ContainerItem,
    Status,
)
from cargotrol.runtime_log import (
    append_runtime_log,
    clear_runtime_log,
    get_runtime_log_line_count,
    log_runtime_error,
    read_runtime_log_tail,
    runtime_log_path,
)
from cargotrol.store import RecordStoreClient, StoreError
from cargotrol.table_state import (
    ContainerTableController,
    ImportMode,
    delete_attachment_prompt,
    delete_container_prompt,
    delete_item_prompt,
)

APP_TITLE = "Cargotrol"
CONTAINER_QUERY_PARAM = "container"

CONFIG_STATE_KEY = "state::app_config"
CONTROLLER_STATE_KEY = "state::table_controller"
NOTICES_STATE_KEY = "state::pending_notices"
EXPORT_BUNDLE_STATE_KEY = "state::export_bundle"
EXTRACTION_DRAFT_STATE_KEY = "state::extraction_draft"
UPLOAD_NONCE_STATE_KEY = "state::upload_nonce"
NEW_CONTAINER_INPUT_KEY = "state::new_container_name"

# (field, header, column weight)
TABLE_COLUMNS: list[tuple[str, str, float]] = [
    ("reference_code", "Reference Code", 1.3),
    ("supplier", "Supplier", 1.3),
    ("cbm", "CBM", 0.7),
    ("cartons", "Cartons", 0.7),
    ("gross_weight", "Gross Weight", 0.8),
    ("product_cost", "Product Cost", 0.9),
    ("freight_cost", "Freight Cost", 0.9),
    ("awaiting", "Awaiting", 1.0),
    ("production_days", "Prod. Days", 0.7),
    ("production_ready", "Prod. Ready", 1.0),
    ("status", "Status", 1.2),
    ("client", "Client", 1.0),
    ("attachments", "Files", 0.8),
    ("actions", "", 0.4),
]
CLICK_TO_EDIT_FIELDS = ["reference_code", "supplier", "cbm", "cartons", "gross_weight", "product_cost", "freight_cost", "production_days"]
MONEY_FIELDS = {"product_cost", "freight_cost"}
STATUS_BADGES = {
    Status.READY_TO_SHIP: ":green[●]",
    Status.AWAITING_SUPPLIER: ":orange[●]",
    Status.NEED_PAYMENT: ":red[●]",
    Status.PENDING: ":gray[●]",
}


def get_query_param_text(name: str) -> str:
    try:
        raw_value: Any = st.query_params.get(name, "")
    except Exception:
        return ""
    if isinstance(raw_value, list):
        if not raw_value:
            return ""
        raw_value = raw_value[0]
    return str(raw_value).strip()


def set_query_param(name: str, value: str) -> None:
    try:
        if value:
            st.query_params[name] = value
        elif name in st.query_params:
            del st.query_params[name]
    except Exception:
        pass


def push_notice(level: str, message: str) -> None:
    notices = st.session_state.setdefault(NOTICES_STATE_KEY, [])
    notices.append((level, message))


def render_pending_notices() -> None:
    notices: list[tuple[str, str]] = st.session_state.pop(NOTICES_STATE_KEY, [])
    for level, message in notices:
        if level == "error":
            st.error(message)
        elif level == "warning":
            st.warning(message)
        elif level == "success":
            st.toast(message, icon=":material/check_circle:")
        else:
            st.info(message)


def accept_prompt(_prompt: str) -> bool:
    return True


def format_number(field_name: str, value: Any) -> str:
    if field_name in MONEY_FIELDS:
        return f"${float(value):,.2f}"
    if isinstance(value, float):
        return f"{value:,.2f}".rstrip("0").rstrip(".") or "0"
    return str(value)


def display_value(item: ContainerItem, field_name: str) -> str:
    value = getattr(item, field_name)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_number(field_name, value)
    text = str(value).strip()
    return text or "-"


def build_controller(config: AppConfig) -> ContainerTableController:
    store = RecordStoreClient.from_config(config)
    registry = ObjectUrlRegistry()
    blob_client = BlobStorageClient(config.blob_token) if config.blob_storage_enabled else None
    return ContainerTableController(
        store=store,
        write_access=config.write_access,
        registry=registry,
        resolver=AttachmentResolver(registry, blob_client),
        notify=push_notice,
    )


def get_controller() -> ContainerTableController:
    return st.session_state[CONTROLLER_STATE_KEY]


def sync_selection_from_query(controller: ContainerTableController) -> None:
    requested = get_query_param_text(CONTAINER_QUERY_PARAM)
    if requested == controller.state.selected_container:
        return
    if requested and not controller.state.has_container(requested):
        push_notice("warning", f"Container `{requested}` was not found.")
        set_query_param(CONTAINER_QUERY_PARAM, controller.state.selected_container)
        return
    controller.select_container(requested)


def select_container(name: str) -> None:
    controller = get_controller()
    if controller.select_container(name):
        set_query_param(CONTAINER_QUERY_PARAM, controller.state.selected_container)
        st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
        st.session_state.pop(EXTRACTION_DRAFT_STATE_KEY, None)


def on_container_picked() -> None:
    select_container(str(st.session_state.get("state::container_picker", "") or ""))


def on_create_container() -> None:
    controller = get_controller()
    name = str(st.session_state.get(NEW_CONTAINER_INPUT_KEY, ""))
    if controller.create_container(name):
        st.session_state[NEW_CONTAINER_INPUT_KEY] = ""
        set_query_param(CONTAINER_QUERY_PARAM, controller.state.selected_container)
        st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)


def on_status_changed(row_id: int, widget_key: str) -> None:
    get_controller().update_field(row_id, "status", st.session_state.get(widget_key))


def on_awaiting_changed(row_id: int, widget_key: str) -> None:
    get_controller().set_awaiting_tag(row_id, str(st.session_state.get(widget_key) or AWAITING_NONE))


def on_text_field_changed(row_id: int, field_name: str, widget_key: str) -> None:
    get_controller().update_field(row_id, field_name, st.session_state.get(widget_key, ""))


def on_edit_started(row_id: int, field_name: str) -> None:
    controller = get_controller()
    if controller.start_edit(row_id, field_name):
        st.session_state[f"edit::{row_id}::{field_name}"] = controller.editor.buffer


def on_edit_committed(widget_key: str) -> None:
    get_controller().commit_edit(st.session_state.get(widget_key, ""))


def on_edit_cancelled() -> None:
    get_controller().cancel_edit()


def on_attachment_uploaded(row_id: int, field_name: str, widget_key: str) -> None:
    uploaded = st.session_state.get(widget_key)
    if uploaded is None:
        return
    get_controller().upload_attachment(row_id, field_name, uploaded.name, uploaded.getvalue(), uploaded.type or None)
    nonces = st.session_state.setdefault(UPLOAD_NONCE_STATE_KEY, {})
    nonces[(row_id, field_name)] = nonces.get((row_id, field_name), 0) + 1


@st.dialog("Delete Item?")
def confirm_delete_row_dialog(item: ContainerItem) -> None:
    st.write(delete_item_prompt(item).split("\n\n", 1)[1])
    confirm_col, cancel_col = st.columns(2, gap="small")
    with confirm_col:
        if st.button("Delete", type="primary", key=f"confirm_delete_row::{item.id}", use_container_width=True):
            get_controller().delete_row(item.id, accept_prompt)
            st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
            st.rerun()
    with cancel_col:
        if st.button("Cancel", key=f"cancel_delete_row::{item.id}", use_container_width=True):
            st.rerun()


@st.dialog("Delete Attachment?")
def confirm_delete_attachment_dialog(row_id: int, field_name: str) -> None:
    st.write(delete_attachment_prompt(field_name).split("\n\n", 1)[1])
    confirm_col, cancel_col = st.columns(2, gap="small")
    with confirm_col:
        if st.button("Delete", type="primary", key=f"confirm_delete_file::{row_id}::{field_name}", use_container_width=True):
            get_controller().delete_attachment(row_id, field_name, accept_prompt)
            st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
            st.rerun()
    with cancel_col:
        if st.button("Cancel", key=f"cancel_delete_file::{row_id}::{field_name}", use_container_width=True):
            st.rerun()


@st.dialog("Delete Container?")
def confirm_delete_container_dialog(name: str) -> None:
    st.write(delete_container_prompt(name).split("\n\n", 1)[1])
    confirm_col, cancel_col = st.columns(2, gap="small")
    with confirm_col:
        if st.button("Delete Container", type="primary", key="confirm_delete_container", use_container_width=True):
            controller = get_controller()
            if controller.delete_container(name, accept_prompt):
                set_query_param(CONTAINER_QUERY_PARAM, controller.state.selected_container)
                st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
            st.rerun()
    with cancel_col:
        if st.button("Cancel", key="cancel_delete_container", use_container_width=True):
            st.rerun()


@st.dialog("Preview", width="large")
def show_attachment_preview_dialog(row_id: int, field_name: str) -> None:
    controller = get_controller()
    item = controller.state.find_item(row_id)
    if item is None:
        st.info("That row is no longer loaded.")
        return
    attachment = item.attachment(field_name)
    if not attachment.is_present:
        st.info("No file attached.")
        return

    try:
        content, mime_type = controller.resolver.read(attachment)
    except Exception as exc:
        log_runtime_error(f"app.preview.{row_id}.{field_name}", exc)
        st.error("Could not load this file. Please try again.")
        return

    file_name = ensure_filename_extension(attachment.name, mime_type, ATTACHMENT_FILE_STEMS[field_name])
    st.caption(file_name)
    kind = classify_attachment(attachment.name, attachment.url, mime_type)
    if kind == PreviewKind.PDF:
        encoded = base64.b64encode(content).decode("ascii")
        st.markdown(
            f'<iframe src="data:application/pdf;base64,{encoded}" width="100%" height="640" '
            'style="border:none;"></iframe>',
            unsafe_allow_html=True,
        )
    elif kind == PreviewKind.IMAGE:
        st.image(content, use_container_width=True)
    elif kind in {PreviewKind.SPREADSHEET, PreviewKind.DOCUMENT}:
        label = "Excel" if kind == PreviewKind.SPREADSHEET else "Word"
        st.info(f"{label} files cannot be previewed here. Download the file to open it.")
    else:
        st.info("Preview is not available for this file type.")

    st.download_button(
        "Download",
        data=content,
        file_name=file_name,
        mime=mime_type,
        key=f"download_attachment::{row_id}::{field_name}",
        use_container_width=True,
    )


@st.dialog("Diagnostics", width="large")
def show_diagnostics_dialog(config: AppConfig) -> None:
    controller = get_controller()
    log_path = runtime_log_path()
    payload = {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "app_version": APP_VERSION,
        "python": sys.version.split(" ")[0],
        "store_configured": config.store_configured,
        "email_extraction_enabled": config.email_extraction_enabled,
        "blob_storage_enabled": config.blob_storage_enabled,
        "read_only": config.write_access.read_only,
        "selected_container": controller.state.selected_container,
        "loaded_rows": len(controller.state.items),
        "object_urls": len(controller.registry),
        "runtime_log_path": str(log_path),
        "runtime_log_exists": log_path.exists(),
        "runtime_log_lines": get_runtime_log_line_count(),
    }
    diagnostics_text = json.dumps(payload, indent=2)
    st.code(diagnostics_text, language="json")

    runtime_log_lines = read_runtime_log_tail(max_lines=200)
    with st.container(border=True):
        st.markdown("**Runtime Log**")
        st.caption(f"Log file: `{log_path}`")
        if runtime_log_lines:
            st.code("\n".join(runtime_log_lines), language="text")
        else:
            st.caption("No runtime errors logged yet.")

        log_action_col_1, log_action_col_2 = st.columns(2, gap="small")
        with log_action_col_1:
            st.download_button(
                "Download Runtime Log",
                data="\n".join(runtime_log_lines).encode("utf-8"),
                file_name=f"cargotrol_runtime_log_{datetime.now().strftime('%Y%m%d_%H%M%S')}.txt",
                mime="text/plain",
                use_container_width=True,
            )
        with log_action_col_2:
            if st.button("Clear Runtime Log", key="diagnostics_clear_runtime_log", use_container_width=True):
                clear_runtime_log()
                st.success("Runtime log cleared.")
                st.rerun()


def render_container_bar(controller: ContainerTableController, read_only: bool) -> None:
    names = controller.state.container_names()
    picker_key = "state::container_picker"
    st.session_state[picker_key] = controller.state.selected_container if controller.state.selected_container in names else None

    picker_col, create_col, delete_col = st.columns([3, 3, 1], gap="small", vertical_alignment="bottom")
    with picker_col:
        st.selectbox(
            "Container",
            options=names,
            key=picker_key,
            placeholder="Select a container",
            on_change=on_container_picked,
        )
    with create_col:
        with st.form("new_container_form", clear_on_submit=False, border=False):
            name_col, button_col = st.columns([3, 1], gap="small", vertical_alignment="bottom")
            with name_col:
                st.text_input("New container", key=NEW_CONTAINER_INPUT_KEY, placeholder="e.g. I110.12 NORTH")
            with button_col:
                st.form_submit_button(
                    "Create",
                    on_click=on_create_container,
                    disabled=read_only,
                    use_container_width=True,
                )
    with delete_col:
        if st.button(
            ":material/delete:",
            key="delete_container_button",
            help="Delete this container and all of its items",
            disabled=read_only or not controller.state.selected_container,
            use_container_width=True,
        ):
            confirm_delete_container_dialog(controller.state.selected_container)


def render_summary(controller: ContainerTableController) -> None:
    metrics = controller.summary()
    top = st.columns(5, gap="small")
    top[0].metric("Total CBM", f"{metrics.total_cbm:,.2f}")
    top[1].metric("Cartons", f"{metrics.total_cartons:,}")
    top[2].metric("Gross Weight", f"{metrics.total_gross_weight:,.0f} kg")
    top[3].metric("CBM Ready to Ship", f"{metrics.cbm_ready_to_ship:,.2f}")
    top[4].metric("CBM Awaiting Supplier", f"{metrics.cbm_awaiting_supplier:,.2f}")
    bottom = st.columns(4, gap="small")
    bottom[0].metric("Need Payment", metrics.need_payment_count)
    bottom[1].metric("Product Cost", f"${metrics.total_product_cost:,.2f}")
    bottom[2].metric("Freight Cost", f"${metrics.total_freight_cost:,.2f}")
    bottom[3].metric("Total Cost", f"${metrics.total_cost:,.2f}")


def render_click_to_edit_cell(controller: ContainerTableController, item: ContainerItem, field_name: str, read_only: bool) -> None:
    if controller.editor.is_editing(item.id, field_name):
        widget_key = f"edit::{item.id}::{field_name}"
        # Inside a form the typed text reaches the controller only through a button;
        # Enter triggers the first one (save).
        with st.form(f"form::{widget_key}", border=False, enter_to_submit=True):
            st.text_input(field_name, key=widget_key, label_visibility="collapsed")
            save_col, cancel_col = st.columns(2, gap="small")
            with save_col:
                st.form_submit_button(":material/check:", on_click=on_edit_committed, args=(widget_key,))
            with cancel_col:
                st.form_submit_button(":material/close:", on_click=on_edit_cancelled)
        return
    st.button(
        display_value(item, field_name),
        key=f"cell::{item.id}::{field_name}",
        on_click=on_edit_started,
        args=(item.id, field_name),
        disabled=read_only,
        type="tertiary",
    )


def render_attachment_menu(controller: ContainerTableController, item: ContainerItem, read_only: bool) -> None:
    present = len(item.attachments())
    with st.popover(f":material/attach_file: {present}", use_container_width=True):
        nonces = st.session_state.setdefault(UPLOAD_NONCE_STATE_KEY, {})
        for field_name, label, _ in ATTACHMENT_FIELDS:
            attachment = item.attachment(field_name)
            st.markdown(f"**{label}**")
            if attachment.is_present:
                name_col, view_col, delete_col = st.columns([4, 1, 1], gap="small", vertical_alignment="center")
                name_col.caption(attachment.name)
                if view_col.button(":material/visibility:", key=f"view::{item.id}::{field_name}", help=f"Preview {label}"):
                    show_attachment_preview_dialog(item.id, field_name)
                if delete_col.button(
                    ":material/delete:",
                    key=f"delete_file::{item.id}::{field_name}",
                    help=f"Delete {describe_attachment_kind(field_name)}",
                    disabled=read_only,
                ):
                    confirm_delete_attachment_dialog(item.id, field_name)
            upload_key = f"upload::{item.id}::{field_name}::{nonces.get((item.id, field_name), 0)}"
            st.file_uploader(
                f"Upload {label}",
                key=upload_key,
                label_visibility="collapsed",
                disabled=read_only,
                on_change=on_attachment_uploaded,
                args=(item.id, field_name, upload_key),
            )


def render_item_row(controller: ContainerTableController, item: ContainerItem, weights: list[float], read_only: bool) -> None:
    cells = st.columns(weights, gap="small", vertical_alignment="center")
    for cell, (field_name, _, _) in zip(cells, TABLE_COLUMNS):
        with cell:
            if field_name in CLICK_TO_EDIT_FIELDS:
                render_click_to_edit_cell(controller, item, field_name, read_only)
            elif field_name == "awaiting":
                widget_key = f"awaiting::{item.id}"
                current = item.awaiting[0] if item.awaiting else AWAITING_NONE
                options = AWAITING_OPTIONS if current in AWAITING_OPTIONS else [*AWAITING_OPTIONS, current]
                st.session_state[widget_key] = current
                st.selectbox(
                    "Awaiting",
                    options=options,
                    key=widget_key,
                    label_visibility="collapsed",
                    disabled=read_only,
                    on_change=on_awaiting_changed,
                    args=(item.id, widget_key),
                    help=join_awaiting(list(item.awaiting)) if len(item.awaiting) > 1 else None,
                )
            elif field_name == "status":
                widget_key = f"status::{item.id}"
                st.session_state[widget_key] = item.status.value
                st.selectbox(
                    "Status",
                    options=STATUS_OPTIONS,
                    key=widget_key,
                    label_visibility="collapsed",
                    disabled=read_only,
                    on_change=on_status_changed,
                    args=(item.id, widget_key),
                    format_func=lambda option: f"{STATUS_BADGES[Status.parse(option)]} {option}",
                )
            elif field_name in {"production_ready", "client"}:
                widget_key = f"{field_name}::{item.id}"
                st.session_state[widget_key] = getattr(item, field_name)
                st.text_input(
                    field_name,
                    key=widget_key,
                    label_visibility="collapsed",
                    disabled=read_only,
                    on_change=on_text_field_changed,
                    args=(item.id, field_name, widget_key),
                )
            elif field_name == "attachments":
                render_attachment_menu(controller, item, read_only)
            elif field_name == "actions":
                if st.button(":material/delete:", key=f"delete_row::{item.id}", help="Delete row", disabled=read_only):
                    confirm_delete_row_dialog(item)


def render_table(controller: ContainerTableController, read_only: bool) -> None:
    weights = [weight for _, _, weight in TABLE_COLUMNS]
    header_cells = st.columns(weights, gap="small")
    for cell, (_, header, _) in zip(header_cells, TABLE_COLUMNS):
        cell.markdown(f"**{header}**" if header else "")

    if not controller.state.items:
        st.caption("No items in this container yet.")
        return
    for item in controller.state.items:
        render_item_row(controller, item, weights, read_only)


def render_toolbar(controller: ContainerTableController, read_only: bool) -> None:
    add_col, export_col, import_col, email_col, diagnostics_col = st.columns(5, gap="small")
    with add_col:
        if st.button(":material/add: Add Row", key="add_row_button", disabled=read_only, use_container_width=True):
            if controller.add_row() is not None:
                st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
            st.rerun()
    with export_col:
        render_export_control(controller)
    with import_col:
        with st.popover(":material/upload_file: Import", use_container_width=True, disabled=read_only):
            render_import_panel(controller)
    with email_col:
        config: AppConfig = st.session_state[CONFIG_STATE_KEY]
        with st.popover(
            ":material/mail: From Email",
            use_container_width=True,
            disabled=read_only or not config.email_extraction_enabled,
            help=None if config.email_extraction_enabled else "Set OPENAI_API_KEY to enable email extraction.",
        ):
            render_email_panel(controller, config)
    with diagnostics_col:
        if st.button(":material/health_and_safety: Diagnostics", key="diagnostics_button", use_container_width=True):
            show_diagnostics_dialog(st.session_state[CONFIG_STATE_KEY])


def render_export_control(controller: ContainerTableController) -> None:
    container_name = controller.state.selected_container
    bundle_entry = st.session_state.get(EXPORT_BUNDLE_STATE_KEY)
    # A prepared bundle is only offered while the rows it was built from are unchanged.
    if bundle_entry and bundle_entry[:2] == (container_name, controller.revision):
        bundle = bundle_entry[2]
        st.download_button(
            f":material/download: {bundle.filename}",
            data=bundle.data,
            file_name=bundle.filename,
            mime=bundle.mime_type,
            key="export_download_button",
            use_container_width=True,
        )
        return
    if st.button(":material/table_view: Export", key="export_prepare_button", use_container_width=True):
        try:
            bundle = export_container(container_name, list(controller.state.items), controller.resolver.read)
        except Exception as exc:
            log_runtime_error("app.export", exc)
            push_notice("error", "Export failed. Please try again.")
        else:
            st.session_state[EXPORT_BUNDLE_STATE_KEY] = (container_name, controller.revision, bundle)
        st.rerun()


def render_import_panel(controller: ContainerTableController) -> None:
    st.markdown("**Import from Excel**")
    mode_labels = {ImportMode.ADD.value: "Add to existing rows", ImportMode.REPLACE.value: "Replace all rows"}
    mode = st.radio(
        "Import mode",
        options=list(mode_labels),
        format_func=lambda option: mode_labels[option],
        key="state::import_mode",
        horizontal=True,
    )
    uploaded = st.file_uploader("Workbook", type=["xlsx", "xls"], key="state::import_file")
    if st.button("Import", key="import_button", disabled=uploaded is None, use_container_width=True):
        try:
            rows = read_import_rows(uploaded.getvalue(), uploaded.name)
        except WorkbookImportError as exc:
            log_runtime_error("app.import", exc)
            push_notice("error", str(exc))
        else:
            controller.import_rows(rows, ImportMode(mode))
            st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
        st.rerun()


def render_email_panel(controller: ContainerTableController, config: AppConfig) -> None:
    st.markdown("**Create a row from an email**")
    email_text = st.text_area("Email content", key="state::email_text", height=180)
    if st.button("Extract", key="extract_email_button", use_container_width=True):
        try:
            client = EmailExtractionClient.from_config(config)
            st.session_state[EXTRACTION_DRAFT_STATE_KEY] = client.extract(
                email_text, container_name=controller.state.selected_container
            )
        except ValueError as exc:
            st.warning(str(exc))
        except ExtractionError as exc:
            log_runtime_error("app.extract_email", exc)
            st.error(f"{exc} Please try again.")

    draft = st.session_state.get(EXTRACTION_DRAFT_STATE_KEY)
    if not draft:
        return
    preview = {key: (value.value if isinstance(value, Status) else value) for key, value in draft.items()}
    preview["awaiting"] = join_awaiting(list(draft.get("awaiting", (AWAITING_NONE,))))
    st.json(preview)
    accept_col, discard_col = st.columns(2, gap="small")
    with accept_col:
        if st.button("Add Row", key="accept_draft_button", type="primary", use_container_width=True):
            if controller.add_extracted_row(draft) is not None:
                st.session_state.pop(EXTRACTION_DRAFT_STATE_KEY, None)
                st.session_state.pop(EXPORT_BUNDLE_STATE_KEY, None)
            st.rerun()
    with discard_col:
        if st.button("Discard", key="discard_draft_button", use_container_width=True):
            st.session_state.pop(EXTRACTION_DRAFT_STATE_KEY, None)
            st.rerun()


def main() -> None:
    st.set_page_config(
        page_title=APP_TITLE,
        page_icon=":package:",
        layout="wide",
        initial_sidebar_state="collapsed",
    )

    if CONFIG_STATE_KEY not in st.session_state:
        st.session_state[CONFIG_STATE_KEY] = load_app_config()
    config: AppConfig = st.session_state[CONFIG_STATE_KEY]

    if CONTROLLER_STATE_KEY not in st.session_state:
        try:
            controller = build_controller(config)
        except (StoreError, ValueError) as exc:
            log_runtime_error("app.build_controller", exc)
            st.title(APP_TITLE)
            st.error(str(exc))
            st.stop()
        if not controller.load_containers():
            st.title(APP_TITLE)
            render_pending_notices()
            st.stop()
        st.session_state[CONTROLLER_STATE_KEY] = controller
        append_runtime_log("INFO", "app.start", f"Session started (read_only={config.write_access.read_only}).")
    controller = get_controller()

    sync_selection_from_query(controller)
    read_only = not config.write_access.allowed

    st.title(APP_TITLE)
    if read_only:
        st.info(config.write_access.notice)
    render_pending_notices()

    render_container_bar(controller, read_only)
    if not controller.state.selected_container:
        st.caption("Select or create a container to get started.")
        return

    st.subheader(controller.state.selected_container)
    render_summary(controller)
    render_toolbar(controller, read_only)
    render_table(controller, read_only)


if __name__ == "__main__":
    main()
