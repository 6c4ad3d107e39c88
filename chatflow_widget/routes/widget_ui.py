from __future__ import annotations

import json
from typing import Any, Dict

from flask import Blueprint, Response, request


bp = Blueprint("widget_ui", __name__)
URL_PREFIX = ""

DEFAULT_QUICK_REPLIES = [
    {"id": "1", "text": "How can I track my order?", "value": "How can I track my order?"},
    {"id": "2", "text": "I need to return an item", "value": "I need to return an item"},
    {"id": "3", "text": "Talk to an agent", "value": "I would like to speak with a support agent"},
]


@bp.route("/widget", methods=["GET"])
def widget() -> Response:
    args = request.args
    settings: Dict[str, Any] = {
        "apiUrl": args.get("apiUrl") or "/api",
        "userId": args.get("userId") or "",
        "conversationId": args.get("conversationId") or None,
        "title": args.get("title") or "Support Chat",
        "subtitle": args.get("subtitle") or "We're here to help",
        "theme": "dark" if args.get("theme") == "dark" else "light",
        "stream": args.get("stream") in ("1", "true", "yes"),
        "showTimestamps": args.get("timestamps", "1") not in ("0", "false", "no"),
        "quickReplies": DEFAULT_QUICK_REPLIES,
    }
    html = _build_html_page(settings)
    return Response(html, mimetype="text/html; charset=utf-8")


def _settings_json(settings: Dict[str, Any]) -> str:
    # Safe inside a <script> block
    return (
        json.dumps(settings, ensure_ascii=False)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def _build_html_page(settings: Dict[str, Any]) -> str:
    return _PAGE.replace("__SETTINGS__", _settings_json(settings))


_PAGE = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Support Chat</title>
    <style>
      :root {
        --primary: #2563eb;
        --primary-dark: #1d4ed8;
        --bg: #f9fafb;
        --surface: #ffffff;
        --border: #e5e7eb;
        --text: #111827;
        --text-secondary: #6b7280;
        --danger: #dc2626;
      }
      body.dark {
        --bg: #111827;
        --surface: #1f2937;
        --border: #374151;
        --text: #f9fafb;
        --text-secondary: #9ca3af;
      }

      * { box-sizing: border-box; }

      body {
        margin: 0;
        font-family: system-ui, -apple-system, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
        background: transparent;
        color: var(--text);
      }

      .widget {
        display: flex;
        flex-direction: column;
        height: 100vh;
        max-height: 600px;
        max-width: 400px;
        background: var(--surface);
        border-radius: 10px;
        box-shadow: 0 10px 30px rgba(0,0,0,.15);
        overflow: hidden;
      }

      header {
        background: linear-gradient(90deg, var(--primary), var(--primary-dark));
        color: #fff;
        padding: 12px 16px;
        display: flex;
        align-items: center;
        justify-content: space-between;
      }
      header h3 { margin: 0; font-size: 17px; }
      header p { margin: 2px 0 0; font-size: 12px; opacity: .9; }
      #ticketBtn {
        display: none;
        background: transparent;
        border: 1px solid rgba(255,255,255,.5);
        color: #fff;
        border-radius: 6px;
        padding: 4px 8px;
        cursor: pointer;
        font-size: 12px;
      }

      .error-bar {
        display: none;
        background: #fef2f2;
        border-bottom: 1px solid #fecaca;
        color: var(--danger);
        padding: 8px 12px;
        font-size: 13px;
        justify-content: space-between;
        align-items: center;
      }
      .error-bar button { border: 0; background: transparent; color: var(--danger); cursor: pointer; }

      #messages {
        flex: 1;
        overflow-y: auto;
        padding: 16px;
        background: var(--bg);
      }
      .empty { text-align: center; color: var(--text-secondary); margin-top: 40%; font-size: 14px; }

      .msg { display: flex; margin-bottom: 12px; }
      .msg.user { justify-content: flex-end; }
      .bubble {
        max-width: 80%;
        padding: 8px 12px;
        border-radius: 12px;
        white-space: pre-wrap;
        word-wrap: break-word;
        font-size: 14px;
        line-height: 1.4;
      }
      .msg.user .bubble { background: var(--primary); color: #fff; border-bottom-right-radius: 4px; }
      .msg.assistant .bubble { background: var(--surface); border: 1px solid var(--border); border-bottom-left-radius: 4px; }
      .msg.failed .bubble { opacity: .7; border: 1px solid var(--danger); }
      .meta { font-size: 11px; color: var(--text-secondary); margin-top: 3px; }
      .msg.user .meta { text-align: right; }
      .retry { border: 0; background: transparent; color: var(--danger); cursor: pointer; font-size: 11px; padding: 0 0 0 6px; }
      .attachment { font-size: 12px; opacity: .85; margin-top: 4px; }

      .typing { display: none; padding: 0 16px 8px; background: var(--bg); }
      .typing span {
        display: inline-block; width: 7px; height: 7px; margin-right: 3px;
        border-radius: 50%; background: var(--text-secondary);
        animation: blink 1.4s infinite both;
      }
      .typing span:nth-child(2) { animation-delay: .2s; }
      .typing span:nth-child(3) { animation-delay: .4s; }
      @keyframes blink { 0%, 80%, 100% { opacity: .2; } 40% { opacity: 1; } }

      .quick-replies { padding: 8px 12px; border-top: 1px solid var(--border); background: var(--bg); }
      .quick-replies p { margin: 0 0 6px; font-size: 12px; color: var(--text-secondary); }
      .quick-replies button {
        margin: 0 6px 6px 0;
        padding: 5px 10px;
        font-size: 13px;
        border: 1px solid var(--border);
        border-radius: 999px;
        background: var(--surface);
        color: var(--text);
        cursor: pointer;
      }
      .quick-replies button:disabled { opacity: .5; cursor: not-allowed; }

      form {
        display: flex;
        gap: 6px;
        padding: 10px;
        border-top: 1px solid var(--border);
        align-items: center;
      }
      form textarea {
        flex: 1;
        resize: none;
        border: 1px solid var(--border);
        border-radius: 8px;
        padding: 8px;
        font: inherit;
        font-size: 14px;
        background: var(--surface);
        color: var(--text);
      }
      form button {
        border: 0;
        border-radius: 8px;
        padding: 9px 14px;
        background: var(--primary);
        color: #fff;
        cursor: pointer;
      }
      form button:disabled { opacity: .5; cursor: not-allowed; }
      #fileLabel { cursor: pointer; font-size: 18px; color: var(--text-secondary); }
      #fileInput { display: none; }
      #fileList { font-size: 11px; color: var(--text-secondary); padding: 0 12px; }
    </style>
  </head>
  <body>
    <div class="widget">
      <header>
        <div>
          <h3 id="title"></h3>
          <p id="subtitle"></p>
        </div>
        <button id="ticketBtn" title="Create support ticket">Ticket</button>
      </header>

      <div class="error-bar" id="errorBar">
        <span id="errorText"></span>
        <button id="errorClose" title="Dismiss">&times;</button>
      </div>

      <div id="messages"><div class="empty">Start a conversation<br/>How can we help you today?</div></div>
      <div class="typing" id="typing"><span></span><span></span><span></span></div>

      <div class="quick-replies" id="quickReplies"><p>Quick replies:</p></div>
      <div id="fileList"></div>
      <form id="composer">
        <label id="fileLabel" for="fileInput" title="Attach files">&#128206;</label>
        <input type="file" id="fileInput" multiple
               accept="image/jpeg,image/png,image/gif,image/webp,application/pdf,text/plain,.doc,.docx" />
        <textarea id="input" rows="1" placeholder="Type your message..."></textarea>
        <button type="submit" id="sendBtn">Send</button>
      </form>
    </div>

    <script>
      const CFG = __SETTINGS__;
      const API = CFG.apiUrl.replace(/\\/$/, "");
      const userId = CFG.userId || ("user-" + Date.now());

      const state = {
        status: "idle",            // idle | sending | error
        messages: [],
        conversationId: CFG.conversationId,
        error: null,
        controller: null,
      };

      const $ = (id) => document.getElementById(id);
      if (CFG.theme === "dark") document.body.classList.add("dark");
      $("title").textContent = CFG.title;
      $("subtitle").textContent = CFG.subtitle;

      function newId() { return "temp-" + Date.now() + "-" + Math.random().toString(36).slice(2, 8); }
      function fmtTime(iso) {
        try { return new Date(iso).toLocaleTimeString([], {hour: "2-digit", minute: "2-digit"}); }
        catch (e) { return ""; }
      }

      function setStatus(status) {
        state.status = status;
        const busy = status === "sending";
        $("sendBtn").disabled = busy;
        $("typing").style.display = busy ? "block" : "none";
        document.querySelectorAll(".quick-replies button").forEach(b => b.disabled = busy);
        renderError();
      }

      function renderError() {
        const bar = $("errorBar");
        if (state.status === "error" && state.error) {
          $("errorText").textContent = state.error;
          bar.style.display = "flex";
        } else {
          bar.style.display = "none";
        }
      }

      function render() {
        const box = $("messages");
        box.innerHTML = "";
        if (!state.messages.length) {
          box.innerHTML = '<div class="empty">Start a conversation<br/>How can we help you today?</div>';
        }
        for (const m of state.messages) {
          const row = document.createElement("div");
          row.className = "msg " + m.role + (m.status === "failed" ? " failed" : "");
          const wrap = document.createElement("div");
          const bubble = document.createElement("div");
          bubble.className = "bubble";
          bubble.textContent = m.content;
          for (const a of (m.attachments || [])) {
            const att = document.createElement("div");
            att.className = "attachment";
            att.textContent = "\\u{1F4CE} " + a.filename;
            bubble.appendChild(att);
          }
          wrap.appendChild(bubble);
          const meta = document.createElement("div");
          meta.className = "meta";
          const parts = [];
          if (CFG.showTimestamps && m.createdAt) parts.push(fmtTime(m.createdAt));
          if (m.role === "user" && m.status) parts.push(m.status);
          meta.textContent = parts.join(" \\u00b7 ");
          if (m.role === "user" && m.status === "failed") {
            const retry = document.createElement("button");
            retry.className = "retry";
            retry.textContent = "Retry";
            retry.onclick = () => retryMessage(m.id);
            meta.appendChild(retry);
          }
          wrap.appendChild(meta);
          row.appendChild(wrap);
          box.appendChild(row);
        }
        box.scrollTop = box.scrollHeight;
        $("ticketBtn").style.display = (state.conversationId && state.messages.length) ? "inline-block" : "none";
      }

      async function postJSON(path, body, signal) {
        const res = await fetch(API + path, {
          method: "POST",
          headers: {"Content-Type": "application/json"},
          body: JSON.stringify(body),
          signal,
        });
        const data = await res.json().catch(() => ({}));
        if (!res.ok) throw new Error(data.error || ("HTTP " + res.status));
        return data;
      }

      async function uploadFile(file, messageId, signal) {
        const fd = new FormData();
        fd.append("file", file);
        fd.append("conversationId", state.conversationId || "pending");
        fd.append("messageId", messageId);
        const res = await fetch(API + "/chat/upload", {method: "POST", body: fd, signal});
        const data = await res.json().catch(() => ({}));
        if (!res.ok) throw new Error(data.error || "Failed to upload file");
        return data.data;
      }

      function adoptConversation(id) {
        if (id && !state.conversationId) {
          state.conversationId = id;
          console.log("Conversation created:", id);
        }
      }

      async function sendMessage(content, files) {
        content = (content || "").trim();
        files = files || [];
        if (!content && !files.length) return;
        if (state.status === "sending") return;

        state.error = null;
        setStatus("sending");
        const controller = new AbortController();
        state.controller = controller;

        const temp = {id: newId(), role: "user", content, status: "sending", createdAt: new Date().toISOString()};
        state.messages.push(temp);
        render();

        try {
          const attachments = [];
          for (const f of files) attachments.push(await uploadFile(f, temp.id, controller.signal));
          temp.attachments = attachments;
          const body = {userId, message: content || "(attachment)", conversationId: state.conversationId || undefined};
          if (attachments.length) body.metadata = {attachments};

          if (CFG.stream) {
            await streamSend(body, temp, controller.signal);
          } else {
            const result = await postJSON("/chat/send", body, controller.signal);
            adoptConversation(result.data.conversationId);
            state.messages = state.messages.filter(m => m.id !== temp.id);
            state.messages.push(result.data.userMessage, result.data.assistantMessage);
            if (result.warning) console.warn(result.warning);
          }
          setStatus("idle");
        } catch (err) {
          if (err.name === "AbortError") {
            setStatus("idle");
          } else {
            temp.status = "failed";
            state.error = err.message || String(err);
            console.error("Chat error:", err);
            setStatus("error");
          }
        } finally {
          state.controller = null;
          render();
        }
      }

      async function streamSend(body, temp, signal) {
        const res = await fetch(API + "/chat/stream", {
          method: "POST",
          headers: {"Content-Type": "application/json", "Accept": "text/event-stream"},
          body: JSON.stringify(body),
          signal,
        });
        if (!res.ok || !res.body) {
          const data = await res.json().catch(() => ({}));
          throw new Error(data.error || ("HTTP " + res.status));
        }
        const reader = res.body.getReader();
        const decoder = new TextDecoder();
        let buffer = "";
        let bot = null;

        while (true) {
          const {value, done} = await reader.read();
          if (done) break;
          buffer += decoder.decode(value, {stream: true});
          let idx;
          while ((idx = buffer.indexOf("\\n\\n")) >= 0) {
            const frame = buffer.slice(0, idx);
            buffer = buffer.slice(idx + 2);
            const dataLine = frame.split("\\n").find(l => l.startsWith("data:"));
            if (!dataLine) continue;
            const evt = JSON.parse(dataLine.slice(5).trim());
            if (evt.type === "start") {
              adoptConversation(evt.conversationId);
              temp.status = "delivered";
              bot = {id: newId(), role: "assistant", content: "", createdAt: new Date().toISOString()};
              state.messages.push(bot);
              $("typing").style.display = "none";
            } else if (evt.type === "chunk" && bot) {
              bot.content += evt.content;
            } else if (evt.type === "complete") {
              if (bot) state.messages = state.messages.filter(m => m.id !== bot.id);
              state.messages.push(evt.message);
            } else if (evt.type === "error") {
              if (bot) state.messages = state.messages.filter(m => m.id !== bot.id);
              throw new Error(evt.error || "Stream failed");
            }
            render();
          }
        }
      }

      function retryMessage(messageId) {
        const m = state.messages.find(x => x.id === messageId);
        if (!m || m.role !== "user") return;
        state.messages = state.messages.filter(x => x.id !== messageId);
        render();
        sendMessage(m.content);
      }

      async function createTicket() {
        if (!state.conversationId) return;
        try {
          const result = await postJSON("/tickets/create", {
            conversationId: state.conversationId,
            subject: "Support Request",
            description: state.messages.map(m => m.role + ": " + m.content).join("\\n"),
            priority: "medium",
          });
          alert("Ticket created successfully! Ticket #" + result.data.ticketNumber);
        } catch (err) {
          console.error("Error creating ticket:", err);
          alert("Failed to create ticket. Please try again.");
        }
      }

      async function loadHistory() {
        if (!state.conversationId) return;
        try {
          const result = await postJSON("/chat/history", {conversationId: state.conversationId});
          state.messages = result.data.messages;
          render();
        } catch (err) {
          console.error("Failed to load history:", err);
        }
      }

      for (const qr of CFG.quickReplies) {
        const b = document.createElement("button");
        b.type = "button";
        b.textContent = qr.text;
        b.onclick = () => sendMessage(qr.value);
        $("quickReplies").appendChild(b);
      }

      $("fileInput").addEventListener("change", () => {
        $("fileList").textContent = Array.from($("fileInput").files).map(f => f.name).join(", ");
      });
      $("composer").addEventListener("submit", (e) => {
        e.preventDefault();
        const files = Array.from($("fileInput").files);
        const text = $("input").value;
        $("input").value = "";
        $("fileInput").value = "";
        $("fileList").textContent = "";
        sendMessage(text, files);
      });
      $("input").addEventListener("keydown", (e) => {
        if (e.key === "Enter" && !e.shiftKey) {
          e.preventDefault();
          $("composer").requestSubmit();
        }
      });
      $("errorClose").onclick = () => { state.error = null; setStatus("idle"); };
      $("ticketBtn").onclick = createTicket;

      loadHistory();
    </script>
  </body>
</html>
"""
