import logging
import threading
import tkinter as tk
from tkinter import colorchooser, filedialog, messagebox, ttk

from fillable_pdf.detection import DetectionTask
from fillable_pdf.errors import EmptyExportFailure, ExportFailure
from fillable_pdf.export import export_all, export_name, export_one
from fillable_pdf.fields import FieldPatch, drag_rect, new_manual_field
from fillable_pdf.ingest import ingest_files
from fillable_pdf.pdf_access import render_page_ppm
from fillable_pdf.settings import configure_logging, load_settings, save_settings
from fillable_pdf.store import DocumentStore

logger = logging.getLogger(__name__)

HANDLE_SIZE = 6  # half size of a resize handle square, canvas pixels
REFRESH_INTERVAL_MS = 30


class FillablePdfCreator:
    def __init__(self, root):
        self.root = root
        self.root.title("Fillable PDF Creator")
        self.root.geometry("1400x800")

        self.settings = load_settings()
        self.store = DocumentStore(self.settings)
        # Commits may come from the detection thread; Tk is only touched here
        self.store_changed = threading.Event()
        self.store.subscribe(lambda snapshot: self.store_changed.set())

        self.current_page = 0
        self.photo = None
        self.rendered = None  # (document id, page index) of the image on canvas
        self.drag = None
        self.detection_task = None
        self.listed_field_ids = []

        self.setup_ui()
        self.watch_store()

    def watch_store(self):
        if self.store_changed.is_set():
            self.store_changed.clear()
            self.refresh()
        self.root.after(REFRESH_INTERVAL_MS, self.watch_store)

    def setup_ui(self):
        # Top toolbar
        toolbar = ttk.Frame(self.root)
        toolbar.pack(side=tk.TOP, fill=tk.X, padx=5, pady=5)

        ttk.Button(toolbar, text="Open PDFs", command=self.open_pdfs).pack(
            side=tk.LEFT, padx=2
        )
        self.detect_btn = ttk.Button(
            toolbar, text="Auto-Detect Blanks", command=self.auto_detect
        )
        self.detect_btn.pack(side=tk.LEFT, padx=2)
        self.cancel_btn = ttk.Button(
            toolbar, text="Cancel", command=self.cancel_detect, state=tk.DISABLED
        )
        self.cancel_btn.pack(side=tk.LEFT, padx=2)
        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(
            side=tk.LEFT, fill=tk.Y, padx=10
        )
        ttk.Button(toolbar, text="Export Current", command=self.export_current).pack(
            side=tk.LEFT, padx=2
        )
        ttk.Button(toolbar, text="Export All (.zip)", command=self.export_everything).pack(
            side=tk.LEFT, padx=2
        )
        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(
            side=tk.LEFT, fill=tk.Y, padx=10
        )
        ttk.Button(
            toolbar, text="Export Style Settings", command=self.open_style_settings
        ).pack(side=tk.LEFT, padx=2)

        # Page navigation
        ttk.Label(toolbar, text="Page:").pack(side=tk.LEFT, padx=(20, 2))
        self.page_var = tk.StringVar(value="1")
        ttk.Entry(toolbar, textvariable=self.page_var, width=5).pack(
            side=tk.LEFT, padx=2
        )
        self.page_label = ttk.Label(toolbar, text="/ 0")
        self.page_label.pack(side=tk.LEFT, padx=2)
        ttk.Button(toolbar, text="Go", command=self.go_to_page).pack(
            side=tk.LEFT, padx=2
        )

        self.status_var = tk.StringVar(value="Open one or more PDFs to start")
        ttk.Label(toolbar, textvariable=self.status_var, foreground="gray").pack(
            side=tk.RIGHT, padx=5
        )

        main_container = ttk.Frame(self.root)
        main_container.pack(side=tk.TOP, fill=tk.BOTH, expand=True, padx=5, pady=5)

        # Left panel - documents
        left_panel = ttk.LabelFrame(main_container, text="Documents", width=220)
        left_panel.pack(side=tk.LEFT, fill=tk.Y, padx=(0, 5))
        left_panel.pack_propagate(False)

        self.documents_listbox = tk.Listbox(left_panel, exportselection=False)
        self.documents_listbox.pack(fill=tk.BOTH, expand=True, padx=5, pady=5)
        self.documents_listbox.bind("<<ListboxSelect>>", self.on_document_select)
        ttk.Button(left_panel, text="Remove", command=self.remove_document).pack(
            padx=5, pady=5
        )

        instructions = tk.Text(
            left_panel, wrap=tk.WORD, height=9, width=25, font=("Arial", 8)
        )
        instructions.pack(padx=5, pady=5)
        instructions.insert(
            "1.0",
            "1. Open PDF files\n2. Auto-detect blank lines\n3. Drag fields to move, "
            "drag corners to resize\n4. Double-click to add a field\n5. Export one "
            "PDF or all as a zip",
        )
        instructions.config(state=tk.DISABLED)

        # Center panel - PDF Canvas
        center_panel = ttk.Frame(main_container)
        center_panel.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        canvas_frame = ttk.Frame(center_panel)
        canvas_frame.pack(fill=tk.BOTH, expand=True)

        self.canvas = tk.Canvas(canvas_frame, bg="gray", cursor="cross")
        v_scroll = ttk.Scrollbar(
            canvas_frame, orient=tk.VERTICAL, command=self.canvas.yview
        )
        h_scroll = ttk.Scrollbar(
            canvas_frame, orient=tk.HORIZONTAL, command=self.canvas.xview
        )
        self.canvas.configure(yscrollcommand=v_scroll.set, xscrollcommand=h_scroll.set)

        v_scroll.pack(side=tk.RIGHT, fill=tk.Y)
        h_scroll.pack(side=tk.BOTTOM, fill=tk.X)
        self.canvas.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        self.canvas.bind("<ButtonPress-1>", self.on_mouse_press)
        self.canvas.bind("<B1-Motion>", self.on_mouse_drag)
        self.canvas.bind("<ButtonRelease-1>", self.on_mouse_release)
        self.canvas.bind("<Double-Button-1>", self.on_double_click)

        # Right panel - Fields list and properties
        right_panel = ttk.Frame(main_container, width=350)
        right_panel.pack(side=tk.RIGHT, fill=tk.Y, padx=(5, 0))
        right_panel.pack_propagate(False)

        fields_frame = ttk.LabelFrame(right_panel, text="Form Fields")
        fields_frame.pack(fill=tk.BOTH, expand=True, padx=5, pady=5)

        list_frame = ttk.Frame(fields_frame)
        list_frame.pack(fill=tk.BOTH, expand=True, padx=5, pady=5)

        self.fields_listbox = tk.Listbox(list_frame, height=8, exportselection=False)
        list_scroll = ttk.Scrollbar(
            list_frame, orient=tk.VERTICAL, command=self.fields_listbox.yview
        )
        self.fields_listbox.configure(yscrollcommand=list_scroll.set)
        self.fields_listbox.bind("<<ListboxSelect>>", self.on_field_select)

        list_scroll.pack(side=tk.RIGHT, fill=tk.Y)
        self.fields_listbox.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        btn_frame = ttk.Frame(fields_frame)
        btn_frame.pack(fill=tk.X, padx=5, pady=5)
        ttk.Button(btn_frame, text="Delete Selected", command=self.delete_field).pack(
            side=tk.LEFT, padx=2
        )
        ttk.Button(btn_frame, text="Clear All", command=self.clear_all_fields).pack(
            side=tk.LEFT, padx=2
        )

        props_frame = ttk.LabelFrame(right_panel, text="Field Properties")
        props_frame.pack(fill=tk.BOTH, padx=5, pady=5)

        ttk.Label(props_frame, text="Field Name:", font=("Arial", 9, "bold")).grid(
            row=0, column=0, sticky=tk.W, padx=5, pady=5
        )
        self.field_name_var = tk.StringVar()
        self.name_entry = name_entry = ttk.Entry(
            props_frame, textvariable=self.field_name_var, width=22
        )
        name_entry.grid(row=0, column=1, sticky=tk.W, padx=5, pady=5)
        name_entry.bind("<Return>", lambda e: self.update_field_properties())
        name_entry.bind("<FocusOut>", lambda e: self.update_field_properties())

        ttk.Label(props_frame, text="Placeholder:", font=("Arial", 9, "bold")).grid(
            row=1, column=0, sticky=tk.W, padx=5, pady=5
        )
        self.placeholder_var = tk.StringVar()
        self.placeholder_entry = ttk.Entry(
            props_frame, textvariable=self.placeholder_var, width=22
        )
        self.placeholder_entry.grid(row=1, column=1, sticky=tk.W, padx=5, pady=5)

        self.multiline_var = tk.BooleanVar(value=False)
        ttk.Checkbutton(
            props_frame,
            text="Multiline",
            variable=self.multiline_var,
            command=self.update_field_properties,
        ).grid(row=2, column=0, columnspan=2, sticky=tk.W, padx=5, pady=5)

        ttk.Button(
            props_frame, text="Apply Changes", command=self.update_field_properties
        ).grid(row=3, column=0, columnspan=2, pady=10, padx=5, sticky=tk.EW)

        self.info_label = ttk.Label(
            props_frame,
            text="Select a field to customize",
            foreground="gray",
            wraplength=300,
        )
        self.info_label.grid(row=4, column=0, columnspan=2, pady=10, padx=5)

    # Documents

    @property
    def active_document(self):
        return self.store.snapshot.active_document

    def open_pdfs(self):
        filenames = filedialog.askopenfilenames(
            title="Select PDFs", filetypes=[("PDF files", "*.pdf"), ("All files", "*.*")]
        )
        if not filenames:
            return

        records, failures = ingest_files(
            filenames, self.settings.render_scale, keep_open=True
        )
        for record in records:
            self.store.add_document(record)
        if records:
            self.current_page = 0
        if failures:
            messagebox.showerror("Error", "\n".join(str(f) for f in failures))

    def on_document_select(self, event):
        selection = self.documents_listbox.curselection()
        if not selection:
            return
        documents = self.store.snapshot.documents
        if selection[0] < len(documents):
            self.current_page = 0
            self.store.set_active_document(documents[selection[0]].id)

    def remove_document(self):
        document = self.active_document
        if document:
            self.current_page = 0
            self.store.remove_document(document.id)

    def go_to_page(self):
        document = self.active_document
        if not document:
            return
        try:
            page_num = int(self.page_var.get()) - 1
        except ValueError:
            messagebox.showwarning("Invalid Input", "Please enter a valid page number")
            return
        if 0 <= page_num < len(document.pages):
            self.current_page = page_num
            self.refresh()
        else:
            messagebox.showwarning(
                "Invalid Page", f"Page must be between 1 and {len(document.pages)}"
            )

    # Rendering

    def refresh(self):
        snapshot = self.store.snapshot
        document = snapshot.active_document

        self.documents_listbox.delete(0, tk.END)
        for i, doc in enumerate(snapshot.documents):
            self.documents_listbox.insert(
                tk.END, f"{doc.file_name} ({len(doc.fields)} fields)"
            )
            if doc.id == snapshot.active_document_id:
                self.documents_listbox.selection_set(i)

        if document is None:
            self.canvas.delete("all")
            self.rendered = None
            self.page_label.config(text="/ 0")
            self.fields_listbox.delete(0, tk.END)
            return

        self.current_page = min(self.current_page, len(document.pages) - 1)
        self.page_var.set(str(self.current_page + 1))
        self.page_label.config(text=f"/ {len(document.pages)}")

        self.render_page(document)
        self.update_fields_list(document)
        self.show_field_properties(document.selected_field)

    def render_page(self, document):
        key = (document.id, self.current_page)
        if self.rendered != key:
            self.photo = None
            if document.handle is not None:
                page = document.handle[self.current_page]
                self.photo = tk.PhotoImage(
                    data=render_page_ppm(page, document.pages[self.current_page].scale)
                )
            self.rendered = key

        self.canvas.delete("all")
        if self.photo is not None:
            self.canvas.create_image(0, 0, anchor=tk.NW, image=self.photo)
        self.canvas.config(scrollregion=self.canvas.bbox(tk.ALL))
        self.draw_fields(document)

    def draw_fields(self, document):
        """Draw rectangles for the fields on the current page"""
        for field in document.fields_on_page(self.current_page):
            selected = field.id == document.selected_field_id
            color = "blue" if field.confidence is None else "green"
            self.canvas.create_rectangle(
                field.x,
                field.y,
                field.x + field.width,
                field.y + field.height,
                outline="orange" if selected else color,
                width=3 if selected else 2,
                tags=f"field_{field.id}",
            )
            if selected:
                for cx, cy in self.handle_points(field).values():
                    self.canvas.create_rectangle(
                        cx - HANDLE_SIZE,
                        cy - HANDLE_SIZE,
                        cx + HANDLE_SIZE,
                        cy + HANDLE_SIZE,
                        fill="orange",
                        outline="white",
                    )

    @staticmethod
    def handle_points(field):
        return {
            "nw": (field.x, field.y),
            "ne": (field.x + field.width, field.y),
            "sw": (field.x, field.y + field.height),
            "se": (field.x + field.width, field.y + field.height),
        }

    # Canvas interaction

    def field_at(self, document, x, y):
        """Return (field, handle) under a canvas point"""
        selected = document.selected_field
        if selected and selected.page_index == self.current_page:
            for handle, (cx, cy) in self.handle_points(selected).items():
                if abs(x - cx) <= HANDLE_SIZE and abs(y - cy) <= HANDLE_SIZE:
                    return selected, handle

        for field in reversed(document.fields_on_page(self.current_page)):
            if field.x <= x <= field.x + field.width and field.y <= y <= field.y + field.height:
                return field, None
        return None, None

    def on_mouse_press(self, event):
        document = self.active_document
        if not document:
            return
        x, y = self.canvas.canvasx(event.x), self.canvas.canvasy(event.y)
        field, handle = self.field_at(document, x, y)
        if field is None:
            self.drag = None
            return

        self.store.select_field(document.id, field.id)
        self.drag = {
            "document_id": document.id,
            "field_id": field.id,
            "handle": handle,
            "origin": field.box,
            "pointer": (x, y),
        }

    def on_mouse_drag(self, event):
        document = self.active_document
        if not document or not self.drag or self.drag["document_id"] != document.id:
            return

        x, y = self.canvas.canvasx(event.x), self.canvas.canvasy(event.y)
        page = document.pages[self.current_page]
        box = drag_rect(
            self.drag["origin"],
            page.width,
            page.height,
            x - self.drag["pointer"][0],
            y - self.drag["pointer"][1],
            self.drag["handle"],
        )
        self.store.update_field(
            document.id, self.drag["field_id"], FieldPatch.from_box(box)
        )

    def on_mouse_release(self, event):
        self.drag = None

    def on_double_click(self, event):
        document = self.active_document
        if not document:
            return
        x, y = self.canvas.canvasx(event.x), self.canvas.canvasy(event.y)
        if self.field_at(document, x, y)[0] is not None:
            return

        page = document.pages[self.current_page]
        field = new_manual_field(
            page,
            x,
            y,
            len(document.fields_on_page(page.index)),
            self.settings.manual_field_width,
            self.settings.manual_field_height,
        )
        self.store.add_field(document.id, field)

    # Field list and properties

    def update_fields_list(self, document):
        self.listed_field_ids = []
        self.fields_listbox.delete(0, tk.END)
        ordered = sorted(document.fields, key=lambda f: (f.page_index, f.y, f.x))
        for i, field in enumerate(ordered):
            tag = "auto" if field.confidence is not None else "manual"
            self.fields_listbox.insert(
                tk.END, f"[P{field.page_index + 1}] {tag}: {field.name}"
            )
            self.listed_field_ids.append(field.id)
            if field.id == document.selected_field_id:
                self.fields_listbox.selection_set(i)

    def on_field_select(self, event):
        """Handle field selection from listbox"""
        document = self.active_document
        selection = self.fields_listbox.curselection()
        if not document or not selection:
            return

        field = document.get_field(self.listed_field_ids[selection[0]])
        if field is None:
            return
        if field.page_index != self.current_page:
            self.current_page = field.page_index
            self.refresh()
        self.store.select_field(document.id, field.id)

    def show_field_properties(self, field):
        if field is None:
            self.info_label.config(text="Select a field to customize")
            return
        # Do not overwrite text the user is typing
        if self.root.focus_get() not in (self.name_entry, self.placeholder_entry):
            self.field_name_var.set(field.name)
            self.placeholder_var.set(field.placeholder or "")
        self.multiline_var.set(field.multiline)
        source = "detected" if field.confidence is not None else "manual"
        self.info_label.config(text=f"Editing: {field.name} ({source})")

    def update_field_properties(self):
        """Commit name, placeholder and multiline edits of the selected field"""
        document = self.active_document
        field = document.selected_field if document else None
        if field is None:
            return

        self.store.rename_field(document.id, field.id, self.field_name_var.get())
        self.store.update_field(
            document.id,
            field.id,
            FieldPatch(
                placeholder=self.placeholder_var.get(),
                multiline=self.multiline_var.get(),
            ),
        )

    def delete_field(self):
        document = self.active_document
        if document and document.selected_field_id:
            self.store.remove_field(document.id, document.selected_field_id)

    def clear_all_fields(self):
        document = self.active_document
        if document and messagebox.askyesno("Confirm", "Delete all fields?"):
            self.store.set_fields(document.id, [])

    # Detection

    def auto_detect(self):
        if not self.store.snapshot.documents or self.detection_task is not None:
            return
        self.detection_task = DetectionTask(self.store, settings=self.settings)
        self.detection_task.start()
        self.detect_btn.config(state=tk.DISABLED)
        self.cancel_btn.config(state=tk.NORMAL)
        self.status_var.set("Detecting blanks...")
        self.root.after(200, self.poll_detection)

    def cancel_detect(self):
        if self.detection_task is not None:
            self.detection_task.cancel()
            self.status_var.set("Cancelling detection...")

    def poll_detection(self):
        task = self.detection_task
        if task is None:
            return
        if not task.done:
            self.root.after(200, self.poll_detection)
            return

        self.detection_task = None
        self.detect_btn.config(state=tk.NORMAL)
        self.cancel_btn.config(state=tk.DISABLED)
        report = task.report
        status = f"Added {report.total_added} detected field(s)"
        if report.cancelled:
            status += " (cancelled)"
        self.status_var.set(status)
        if report.warning:
            messagebox.showwarning("Auto-Detect", report.warning)

    # Export

    def export_current(self):
        document = self.active_document
        if not document:
            messagebox.showwarning("No Data", "Please open a PDF and add fields first")
            return

        try:
            data = export_one(document, self.settings)
        except EmptyExportFailure as e:
            messagebox.showwarning("No Data", str(e))
            return
        except ExportFailure as e:
            messagebox.showerror("Error", f"{e}\n\nTry again or reopen the file.")
            return

        filename = filedialog.asksaveasfilename(
            title="Save Fillable PDF",
            initialfile=export_name(document.file_name),
            defaultextension=".pdf",
            filetypes=[("PDF files", "*.pdf"), ("All files", "*.*")],
        )
        if filename:
            self.write_file(filename, data)

    def export_everything(self):
        documents = self.store.snapshot.documents
        if not documents:
            messagebox.showwarning("No Data", "No documents to export.")
            return

        try:
            batch = export_all(documents, self.settings)
        except EmptyExportFailure as e:
            messagebox.showwarning("No Data", str(e))
            return
        except ExportFailure as e:
            messagebox.showerror("Error", str(e))
            return

        if batch.failures:
            messagebox.showwarning(
                "Export", "\n".join(str(f) for f in batch.failures)
            )

        filename = filedialog.asksaveasfilename(
            title="Save Archive",
            initialfile=self.settings.archive_name,
            defaultextension=".zip",
            filetypes=[("ZIP archives", "*.zip"), ("All files", "*.*")],
        )
        if filename:
            self.write_file(filename, batch.data)

    def write_file(self, filename, data):
        try:
            with open(filename, "wb") as f:
                f.write(data)
        except OSError as e:
            messagebox.showerror("Error", f"Failed to save file: {str(e)}")
            return
        logger.info("Saved %s", filename)
        self.status_var.set(f"Saved {filename}")

    # Export style settings

    def rgb_to_hex(self, rgb):
        """Convert RGB tuple (0-1) to hex color string"""
        r, g, b = [int(c * 255) for c in rgb]
        return f"#{r:02x}{g:02x}{b:02x}"

    def open_style_settings(self):
        """Open dialog to configure the exported widget appearance"""
        settings_window = tk.Toplevel(self.root)
        settings_window.title("Export Style Settings")
        settings_window.geometry("420x360")
        settings_window.transient(self.root)
        settings_window.grab_set()

        main_frame = ttk.Frame(settings_window, padding=20)
        main_frame.pack(fill=tk.BOTH, expand=True)

        ttk.Label(
            main_frame, text="Exported Field Appearance", font=("Arial", 12, "bold")
        ).pack(pady=(0, 10))

        settings_frame = ttk.Frame(main_frame)
        settings_frame.pack(fill=tk.BOTH, expand=True, pady=(0, 20))

        ttk.Label(settings_frame, text="Font Size:", font=("Arial", 9, "bold")).grid(
            row=0, column=0, sticky=tk.W, pady=10, padx=5
        )
        font_size_var = tk.StringVar(value=str(self.settings.font_size))
        ttk.Spinbox(
            settings_frame, from_=6, to=72, increment=1, textvariable=font_size_var, width=15
        ).grid(row=0, column=1, sticky=tk.W, padx=10, pady=10)

        ttk.Label(settings_frame, text="Border Width:", font=("Arial", 9, "bold")).grid(
            row=1, column=0, sticky=tk.W, pady=10, padx=5
        )
        border_width_var = tk.StringVar(value=str(self.settings.border_width))
        ttk.Spinbox(
            settings_frame,
            from_=0,
            to=10,
            increment=0.5,
            textvariable=border_width_var,
            width=15,
        ).grid(row=1, column=1, sticky=tk.W, padx=10, pady=10)

        colors = {
            "text_color": self.settings.text_color,
            "fill_color": self.settings.fill_color,
        }

        def color_button(row, label, key):
            ttk.Label(settings_frame, text=label, font=("Arial", 9, "bold")).grid(
                row=row, column=0, sticky=tk.W, pady=10, padx=5
            )
            button = tk.Button(
                settings_frame,
                text="Choose Color",
                bg=self.rgb_to_hex(colors[key]),
                width=15,
            )

            def choose():
                color = colorchooser.askcolor(
                    initialcolor=self.rgb_to_hex(colors[key]), title=label
                )
                if color[0]:
                    colors[key] = tuple(c / 255.0 for c in color[0])
                    button.config(bg=color[1])

            button.config(command=choose)
            button.grid(row=row, column=1, sticky=tk.W, padx=10, pady=10)

        color_button(2, "Text Color:", "text_color")
        color_button(3, "Fill Color:", "fill_color")

        def save():
            try:
                self.settings.font_size = float(font_size_var.get())
                self.settings.border_width = float(border_width_var.get())
            except ValueError:
                messagebox.showwarning(
                    "Invalid Input",
                    "Please enter valid numeric values.",
                    parent=settings_window,
                )
                return
            self.settings.text_color = colors["text_color"]
            self.settings.fill_color = colors["fill_color"]
            save_settings(self.settings)
            settings_window.destroy()

        button_frame = ttk.Frame(main_frame)
        button_frame.pack(side=tk.BOTTOM, pady=10)
        ttk.Button(button_frame, text="Save Settings", command=save, width=15).pack(
            side=tk.LEFT, padx=5
        )
        ttk.Button(
            button_frame, text="Cancel", command=settings_window.destroy, width=12
        ).pack(side=tk.LEFT, padx=5)


def main():
    configure_logging()
    root = tk.Tk()
    FillablePdfCreator(root)
    root.mainloop()


if __name__ == "__main__":
    main()
