
import requests
import sys

BASE_URL = "http://127.0.0.1:8000"

SESSION = {
    "id": "smoke-1",
    "examVariant": "academic",
    "sections": [
        {
            "id": "L1",
            "sectionType": "listening",
            "questions": [
                {"id": "q1", "questionType": "multiple_choice", "questionNumber": 1, "correctAnswer": "B"},
                {"id": "q2", "questionType": "fill_blank", "questionNumber": 2, "correctAnswer": "red|crimson;white"},
            ],
        }
    ],
    "answers": [
        {"questionId": "q1", "studentAnswer": "b"},
        {"questionId": "q2", "studentAnswer": ["Crimson", "blue"]},
    ],
}


def run_smoke(base_url=BASE_URL):
    print(f"--- STARTING SMOKE CHECK AGAINST {base_url} ---")

    # 1. Server up?
    try:
        r = requests.get(f"{base_url}/docs", timeout=2)
        print(f"[PASS] GET /docs -> {r.status_code}")
    except requests.RequestException as e:
        print(f"[FAIL] Could not connect to backend: {e}")
        return False

    # 2. Register a session and grade it
    r = requests.post(f"{base_url}/api/sessions", json=SESSION, timeout=5)
    print(f"[{'PASS' if r.status_code == 200 else 'FAIL'}] POST /api/sessions -> {r.status_code}")
    if r.status_code != 200:
        print(f"Body: {r.text}")
        return False

    r = requests.post(f"{base_url}/api/sessions/{SESSION['id']}/recalculate", timeout=5)
    ok = r.status_code == 200
    print(f"[{'PASS' if ok else 'FAIL'}] POST /recalculate -> {r.status_code}")
    if ok:
        score = r.json()
        # q1 right, one of two q2 blanks right
        print(f"Score: {score['totalScore']}/{score['maxScore']} ({score['percentage']:.1f}%)")

    # 3. Band lookup
    r = requests.get(f"{base_url}/api/bands/listening", params={"correct": 30}, timeout=2)
    print(f"[{'PASS' if r.status_code == 200 else 'FAIL'}] GET /api/bands/listening -> {r.status_code}")
    if r.status_code == 200:
        print("Response:", r.json())

    # 4. Manual grade on an auto-graded question must be refused
    r = requests.patch(
        f"{base_url}/api/sessions/{SESSION['id']}/answers/q1/grade",
        json={"pointsEarned": 1},
        timeout=5,
    )
    print(f"[{'PASS' if r.status_code == 422 else 'FAIL'}] PATCH manual grade on MCQ -> {r.status_code} (Expected 422)")
    return ok


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else BASE_URL
    sys.exit(0 if run_smoke(url) else 1)
