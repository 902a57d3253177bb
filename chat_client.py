#!/usr/bin/env python3
"""
TUI chat client for the dealership backend.

Buyers pick a vehicle and chat with the showroom admin about it; admins pick
one of their conversations and answer it.
"""
import asyncio
import websockets
import json
import sys
import os
from datetime import datetime
from typing import Dict, List, Optional
import requests


class ChatClient:
    def __init__(self, base_url: str = "http://127.0.0.1:8000"):
        self.base_url = base_url
        self.ws_url = base_url.replace("http", "ws")
        self.token: Optional[str] = None
        self.me: Optional[Dict] = None
        self.conversation: Optional[Dict] = None
        self.seen_ids = set()
        self.websocket = None
        self.running = False

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def clear_screen(self):
        os.system('clear' if os.name == 'posix' else 'cls')

    def print_header(self):
        print("=" * 60)
        print(" Dealership Chat".center(60))
        print("=" * 60)
        if self.me:
            print(f" Logged in as: {self.me['name']} ({self.me['role']})".center(60))
        if self.conversation:
            print(f" Conversation: {self.conversation['conversationKey']}".center(60))
        print("=" * 60)

    def register(self, username: str, name: str, password: str) -> bool:
        response = requests.post(
            f"{self.base_url}/api/auth/register",
            json={"username": username, "name": name, "password": password}
        )
        if response.status_code == 201:
            print(f"✓ User '{username}' registered successfully!")
            return True
        print(f"✗ Registration failed: {response.json().get('detail', 'Unknown error')}")
        return False

    def login(self, username: str, password: str) -> bool:
        response = requests.post(
            f"{self.base_url}/api/auth/login",
            json={"username": username, "password": password}
        )
        if response.status_code != 200:
            print(f"✗ Login failed: {response.json().get('detail', 'Unknown error')}")
            return False
        self.token = response.json()["access_token"]
        self.me = requests.get(f"{self.base_url}/api/auth/me", headers=self._auth_headers()).json()
        print(f"✓ Logged in as '{username}'")
        return True

    def choose_buyer_conversation(self) -> bool:
        """Buyers start or resume a conversation about one vehicle."""
        admin = requests.get(f"{self.base_url}/api/admin-user", headers=self._auth_headers())
        if admin.status_code != 200:
            print("✗ No admin is available to chat with")
            return False
        admin = admin.json()

        vehicles: List[Dict] = requests.get(f"{self.base_url}/api/vehicles").json()
        if not vehicles:
            print("✗ No vehicles are listed")
            return False
        print("\nVehicles:")
        for i, v in enumerate(vehicles, 1):
            print(f"  {i}. {v['year']} {v['brand']} {v['model']} - {v['price']}")
        choice = input("\nChoose a vehicle: ").strip()
        try:
            vehicle = vehicles[int(choice) - 1]
        except (ValueError, IndexError):
            print("✗ Invalid choice")
            return False

        self.conversation = {
            "conversationKey": f"user_{self.me['id']}_vehicle_{vehicle['id']}_admin_{admin['id']}",
            "receiverId": admin["id"],
            "listingId": vehicle["id"],
        }
        return True

    def choose_admin_conversation(self) -> bool:
        conversations = requests.get(
            f"{self.base_url}/api/conversations", headers=self._auth_headers()
        ).json()
        if not conversations:
            print("✗ No conversations yet")
            return False
        print("\nConversations:")
        for i, c in enumerate(conversations, 1):
            unread = f" [{c['unread_count']} unread]" if c['unread_count'] else ""
            vehicle = f"{c['vehicle_brand'] or ''} {c['vehicle_model'] or ''}".strip() or "vehicle"
            print(f"  {i}. {c['counterpart_name']} - {vehicle}: {c['last_message']}{unread}")
        choice = input("\nChoose a conversation: ").strip()
        try:
            picked = conversations[int(choice) - 1]
        except (ValueError, IndexError):
            print("✗ Invalid choice")
            return False

        self.conversation = {
            "conversationKey": picked["conversation_key"],
            "receiverId": picked["counterpart_id"],
            "listingId": picked["listing_id"],
        }
        return True

    async def emit(self, event: str, data: Dict):
        await self.websocket.send(json.dumps({"type": event, "data": data}))

    def show_message(self, message: Dict):
        # History and broadcast can overlap; message ids de-duplicate them
        if message["id"] in self.seen_ids:
            return
        self.seen_ids.add(message["id"])
        sent_at = datetime.fromisoformat(message["createdAt"].replace("Z", "+00:00"))
        timestamp = sent_at.astimezone().strftime("%H:%M:%S")
        print(f"\n[{timestamp}] {message.get('senderName') or message['senderId']}: {message['body']}")

    async def receive_messages(self):
        """Receive and display server events."""
        try:
            async for raw in self.websocket:
                frame = json.loads(raw)
                event, data = frame.get("type"), frame.get("data")
                if event == "load_messages":
                    for message in data:
                        self.show_message(message)
                elif event == "receive_message":
                    self.show_message(data)
                elif event == "message_deleted":
                    print(f"\n[SYSTEM] Message {data['messageId']} was deleted")
                elif event == "conversation_deleted":
                    print("\n[SYSTEM] This conversation was deleted")
                    self.running = False
                    break
                elif event in ("update_notification_count", "admin_new_unread_message"):
                    print("\n[SYSTEM] New message in another conversation")
                print("> ", end="", flush=True)
        except websockets.exceptions.ConnectionClosed:
            print("\n[SYSTEM] Connection closed")
            self.running = False

    async def send_messages(self):
        """Read lines from stdin and send them to the conversation."""
        loop = asyncio.get_event_loop()
        while self.running:
            line = (await loop.run_in_executor(None, sys.stdin.readline)).strip()
            if not line:
                continue
            if line.lower() in ['/quit', '/exit', '/q']:
                self.running = False
                break
            await self.emit("send_message", {
                "conversationKey": self.conversation["conversationKey"],
                "senderId": self.me["id"],
                "receiverId": self.conversation["receiverId"],
                "listingId": self.conversation["listingId"],
                "body": line,
            })

    async def start_chat(self):
        key = self.conversation["conversationKey"]
        async with websockets.connect(f"{self.ws_url}/ws/chat?token={self.token}") as websocket:
            self.websocket = websocket
            self.running = True
            await self.emit("join_room", {"conversationKey": key, "token": self.token})
            clear_event = "admin_cleared_notifications" if self.me["role"] == "admin" else "user_cleared_notifications"
            id_field = "adminId" if self.me["role"] == "admin" else "userId"
            await self.emit(clear_event, {id_field: self.me["id"], "conversationKey": key})

            print("\nConnected! Type your messages and press Enter. /quit to exit.\n")
            print("> ", end="", flush=True)

            receive_task = asyncio.create_task(self.receive_messages())
            send_task = asyncio.create_task(self.send_messages())
            await asyncio.wait([receive_task, send_task], return_when=asyncio.FIRST_COMPLETED)
            await self.emit("leave_room", {"conversationKey": key})
            receive_task.cancel()

    def run(self):
        self.clear_screen()
        self.print_header()

        print("\n1. Login")
        print("2. Register")
        print("3. Exit")
        choice = input("\nChoose an option: ").strip()
        if choice == "3":
            print("Goodbye!")
            return

        username = input("Username: ").strip()
        password = input("Password: ").strip()
        if choice == "2":
            name = input("Full name: ").strip()
            if not self.register(username, name, password):
                return

        try:
            if not self.login(username, password):
                return
            picked = (self.choose_admin_conversation() if self.me["role"] == "admin"
                      else self.choose_buyer_conversation())
        except requests.RequestException as e:
            print(f"✗ Error: {e}")
            return
        if not picked:
            return

        self.clear_screen()
        self.print_header()
        try:
            asyncio.run(self.start_chat())
        except KeyboardInterrupt:
            print("\n\nChat ended. Goodbye!")


if __name__ == "__main__":
    ChatClient(sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000").run()
