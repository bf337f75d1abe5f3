from dotenv import load_dotenv
import os
import time
import httpx

load_dotenv()

SESSION_TOKEN = os.getenv("SESSION_TOKEN")
FASTAPI_URI = os.getenv("FASTAPI_URI", "http://localhost:8000")
POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", "5"))

def watch_notifications():
    """Poll the notification endpoints and print anything new. Ctrl+C to stop."""
    headers = {"Authorization": f"Bearer {SESSION_TOKEN}"}
    seen = set()

    with httpx.Client(base_url=FASTAPI_URI, headers=headers) as client:
        while True:
            response = client.get("/notifications", params={"limit": 20})
            response.raise_for_status()
            for notification in reversed(response.json()):
                if notification["id"] not in seen:
                    seen.add(notification["id"])
                    print(f"[{notification['type']}] {notification['title']}: {notification['message']}")

            unread = client.get("/notifications/unread-count").json()["count"]
            print(f"Unread: {unread}")
            time.sleep(POLL_INTERVAL)

if __name__ == "__main__":
    try:
        watch_notifications()
    except KeyboardInterrupt:
        pass
