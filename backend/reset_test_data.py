import requests
import os
from dotenv import load_dotenv

# Optional: Load from .env
load_dotenv()
BASE_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
TOKEN = os.getenv("PINGCHAIN_TOKEN", "")

RESET_TEST_DATA_URL = f"{BASE_URL}/api/test-data"

def reset_test_data():
    headers = {"Authorization": f"Bearer {TOKEN}"}
    try:
        response = requests.delete(RESET_TEST_DATA_URL, headers=headers, timeout=30)
        response.raise_for_status()
        print("✅ Test data wiped:", response.json().get("deleted", {}))
    except requests.exceptions.RequestException as e:
        print("❌ Failed to wipe test data:", str(e))

if __name__ == "__main__":
    if not TOKEN:
        print("❌ Set PINGCHAIN_TOKEN to a bearer token for the user to reset")
    else:
        reset_test_data()
