from __future__ import annotations

# Ticket display window (Tkinter).
#
# Shows the current number in large type, the passed numbers, featured links
# and when the state last changed. It is a plain session client: it never
# changes state, it only renders what the service sends.
#
# Architecture:
# - MQTT callbacks run on a background thread managed by paho-mqtt.
# - Tkinter must be updated from the main UI thread.
# - Incoming events are pushed into a Queue and drained via `root.after(...)`.

import argparse
import queue
import tkinter as tk
import webbrowser
from tkinter import ttk
from typing import Any, cast

from .client import DisplayState, SessionClient
from .mqtt_topics import DEFAULT_NAMESPACE


class TicketDisplayApp:
    def __init__(self, *, mqtt_host: str, mqtt_port: int, namespace: str, refresh_ms: int = 200) -> None:
        self.refresh_ms = refresh_ms
        self.state = DisplayState()
        self.locally_muted = False

        self.root = tk.Tk()
        self.root.title("Now serving")
        self.root.geometry("640x520")

        self.status_var = tk.StringVar(value="Connecting...")
        ttk.Label(self.root, textvariable=self.status_var).pack(fill=cast(Any, tk.X), padx=10, pady=(10, 0))

        self.number_var = tk.StringVar(value="-")
        tk.Label(self.root, textvariable=self.number_var, font=("Helvetica", 120, "bold")).pack(pady=10)

        self.closed_var = tk.StringVar(value="")
        tk.Label(self.root, textvariable=self.closed_var, fg="red", font=("Helvetica", 18)).pack()

        ttk.Label(self.root, text="Passed numbers").pack(anchor=cast(Any, tk.W), padx=10)
        self.passed_var = tk.StringVar(value="(none)")
        ttk.Label(self.root, textvariable=self.passed_var, font=("Helvetica", 20)).pack(anchor=cast(Any, tk.W), padx=10)

        ttk.Label(self.root, text="Links").pack(anchor=cast(Any, tk.W), padx=10, pady=(10, 0))
        self.links_frame = ttk.Frame(self.root)
        self.links_frame.pack(fill=cast(Any, tk.X), padx=10)

        self.mute_button = ttk.Button(self.root, text="Mute", command=self.toggle_mute)
        self.mute_button.pack(side=cast(Any, tk.BOTTOM), pady=10)

        # Incoming events from the MQTT thread.
        self._inbox: "queue.Queue[dict[str, Any]]" = queue.Queue()

        self._session = SessionClient(
            mqtt_host=mqtt_host,
            mqtt_port=mqtt_port,
            namespace=namespace,
            on_event=self._inbox.put,
        )

        self.root.protocol("WM_DELETE_WINDOW", self.close)

    def start(self) -> None:
        # If the broker isn't reachable, keep the window up and say so.
        try:
            self._session.start()
        except OSError as e:
            self.status_var.set(f"MQTT connection failed: {e}")

        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)
        self.root.mainloop()

    def close(self) -> None:
        try:
            self._session.stop()
        finally:
            self.root.destroy()

    def toggle_mute(self) -> None:
        self.locally_muted = not self.locally_muted
        self.mute_button.configure(text="Unmute" if self.locally_muted else "Mute")

    # -------------------- UI thread polling --------------------

    def _drain_inbox(self) -> None:
        changed = False
        called = False
        while True:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                break
            called = self.state.apply(msg) or called
            changed = True

        if changed:
            self._render()
        if called and self.state.sound_enabled and not self.locally_muted:
            self.root.bell()

        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)

    def _render(self) -> None:
        st = self.state

        if st.unavailable:
            self.status_var.set(f"Unavailable: {st.unavailable}")
        elif st.updated:
            self.status_var.set(f"Last updated {st.updated}")
        else:
            self.status_var.set("Connected")

        self.number_var.set("-" if st.number is None else str(st.number))
        self.closed_var.set("" if st.public else "Closed")
        self.passed_var.set(", ".join(str(n) for n in st.passed) or "(none)")

        for child in self.links_frame.winfo_children():
            child.destroy()
        if not st.featured:
            ttk.Label(self.links_frame, text="(none)").pack(anchor=cast(Any, tk.W))
        for item in st.featured:
            url = item.get("url", "")
            ttk.Button(
                self.links_frame,
                text=item.get("text", url),
                command=lambda u=url: webbrowser.open(u),
            ).pack(anchor=cast(Any, tk.W), pady=2)


def main() -> None:
    parser = argparse.ArgumentParser(description="Ticket display window (Tkinter + MQTT)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--refresh-ms", type=int, default=200)
    args = parser.parse_args()

    app = TicketDisplayApp(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        refresh_ms=args.refresh_ms,
    )
    app.start()


if __name__ == "__main__":
    main()
