import tkinter as tk
from tkinter import ttk, messagebox
import datetime
import emoji
from typing import Dict, Any, Optional

from common.crypto import KeyValidationError
from .net import RelayClient


class ChatUI(tk.Tk):
    def __init__(self, host: str = "127.0.0.1", port: int = 8080, username: str = "",
                 encrypt: bool = False, key_text: str = ""):
        super().__init__()
        self.title("Relay Chat")
        self.geometry("720x480")
        self.net: Optional[RelayClient] = None

        self.columnconfigure(0, weight=1)
        self.rowconfigure(1, weight=1)

        # connection bar
        bar = ttk.Frame(self)
        bar.grid(row=0, column=0, sticky="ew", padx=8, pady=(8, 4))
        self.host_var = tk.StringVar(value=host)
        self.port_var = tk.StringVar(value=str(port))
        self.user_var = tk.StringVar(value=username)
        self.encrypt_var = tk.BooleanVar(value=encrypt)
        self.key_var = tk.StringVar(value=key_text)

        ttk.Label(bar, text="Server").pack(side="left")
        ttk.Entry(bar, textvariable=self.host_var, width=14).pack(side="left", padx=(4, 8))
        ttk.Label(bar, text="Port").pack(side="left")
        ttk.Entry(bar, textvariable=self.port_var, width=6).pack(side="left", padx=(4, 8))
        ttk.Label(bar, text="Name").pack(side="left")
        ttk.Entry(bar, textvariable=self.user_var, width=12).pack(side="left", padx=(4, 8))
        self.connect_btn = ttk.Button(bar, text="Connect", command=self.toggle_connection)
        self.connect_btn.pack(side="left", padx=4)
        ttk.Checkbutton(bar, text="Encrypt messages", variable=self.encrypt_var,
                        command=self._sync_settings).pack(side="left", padx=(8, 4))
        ttk.Label(bar, text="Key").pack(side="left")
        key_entry = ttk.Entry(bar, textvariable=self.key_var, width=10, show="*")
        key_entry.pack(side="left", padx=4)
        self.key_var.trace_add("write", lambda *_: self._sync_settings())

        # message area
        frame = ttk.Frame(self)
        frame.grid(row=1, column=0, sticky="nsew", padx=8)
        frame.rowconfigure(0, weight=1)
        frame.columnconfigure(0, weight=1)
        self.text = tk.Text(frame, state="disabled", wrap="word")
        self.text.grid(row=0, column=0, sticky="nsew")
        sb = ttk.Scrollbar(frame, orient="vertical", command=self.text.yview)
        sb.grid(row=0, column=1, sticky="ns")
        self.text.configure(yscrollcommand=sb.set)
        self.text.tag_config("system", foreground="gray")
        self.text.tag_config("error", foreground="#c62828")

        # compose area
        compose = ttk.Frame(self)
        compose.grid(row=2, column=0, sticky="ew", padx=8, pady=8)
        compose.columnconfigure(0, weight=1)
        self.entry = ttk.Entry(compose)
        self.entry.grid(row=0, column=0, sticky="ew", ipady=6)
        self.entry.bind("<Return>", lambda e: self.send_text())
        self.send_btn = ttk.Button(compose, text="Send", command=self.send_text, width=12)
        self.send_btn.grid(row=0, column=1, padx=4, ipady=4)

        self.protocol("WM_DELETE_WINDOW", self.on_close)
        self._update_buttons()

    def append(self, text: str, tag: Optional[str] = None):
        self.text.configure(state="normal")
        self.text.insert("end", text + "\n", (tag,) if tag else ())
        self.text.configure(state="disabled")
        self.text.see("end")

    def ts(self):
        return datetime.datetime.now().strftime("%H:%M:%S")

    def toggle_connection(self):
        if self.net and self.net.connected:
            self.net.close()
            self.net = None
            self.append(f"(System) ({self.ts()}) Disconnected.", "system")
            self._update_buttons()
            return

        try:
            port = int(self.port_var.get())
        except ValueError:
            messagebox.showerror("Error", "Port must be a number")
            return
        net = RelayClient(self.host_var.get().strip(), port, self.user_var.get().strip(),
                          encrypt=self.encrypt_var.get(), key_text=self.key_var.get())
        try:
            net.connect()
        except OSError as exc:
            messagebox.showerror("Error", f"Could not connect to the server: {exc}")
            return
        self.net = net
        # callbacks arrive on the network thread; hand them to the Tk loop
        net.on_message = lambda env: self.after(0, self._on_message, env)
        self.append(f"(System) ({self.ts()}) Connected to {net.host}:{net.port}.", "system")
        self._update_buttons()

    def send_text(self):
        raw = self.entry.get().strip()
        if not raw or not (self.net and self.net.connected):
            return
        self._sync_settings()
        try:
            self.net.send_text(emoji.emojize(raw, language="alias"))
        except KeyValidationError as exc:
            messagebox.showerror("Error", f"Invalid encryption key: {exc}")
            return
        except OSError as exc:
            self.append(f"(System) ({self.ts()}) Send failed: {exc}", "error")
            return
        self.entry.delete(0, "end")

    def on_close(self):
        if self.net:
            self.net.close()
        self.destroy()

    def _sync_settings(self):
        if self.net:
            self.net.encrypt = self.encrypt_var.get()
            self.net.key_text = self.key_var.get()

    def _update_buttons(self):
        connected = bool(self.net and self.net.connected)
        self.connect_btn.configure(text="Disconnect" if connected else "Connect")
        self.send_btn.configure(state="normal" if connected else "disabled")

    # --------- incoming events ----------
    def _on_message(self, env: Dict[str, Any]):
        t = env.get("type")
        if t == "msg":
            sender = env.get("sender")
            self.append(f"{sender}: {env['text']}" if sender is not None else env["text"])
        elif t == "error":
            self.append(f"(Error) ({self.ts()}) {env['text']}", "error")
        elif t == "system":
            self.append(f"(System) ({self.ts()}) {env['text']}", "system")
            if self.net and not self.net.connected:
                self.net = None
            self._update_buttons()
