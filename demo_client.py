#!/usr/bin/env python3
"""
Demo client that fills a running events server with test data.
Creates a question catalog, a question set and an event, then lets a crowd
of players join and answer questions with random mistakes and hint use.
"""

import argparse
import asyncio
import random
from datetime import datetime, timedelta, timezone

import aiohttp

ADMIN_HEADERS = {"X-User-Id": "demo-admin", "X-User-Role": "admin", "X-User-Email": "admin@example.com"}

FIRST_NAMES = [
    "Alice",
    "Bob",
    "Charlie",
    "Diana",
    "Eve",
    "Frank",
    "Grace",
    "Henry",
    "Ivy",
    "Jack",
    "Kate",
    "Leo",
    "Maya",
    "Noah",
    "Olivia",
    "Paul",
    "Quinn",
    "Ruby",
    "Sam",
    "Tina",
]

ORGANIZATIONS = ["Acme", "Globex", "Initech", "Umbrella", ""]

# (category, title, difficulty, product, answer, hint)
QUESTIONS = [
    ("Cloud", "Public Bucket", "easy", "Wiz Cloud", "s3", "Where do objects live?"),
    ("Cloud", "Toxic Combination", "medium", "Wiz Cloud", "attack path", "Think graph"),
    ("Cloud", "Lateral Movement", "hard", "Wiz Cloud", "assume role", ""),
    ("Code", "Leaked Secret", "easy", "Wiz Code", "api key", "Check the commit history"),
    ("Code", "Vulnerable Dependency", "medium", "Wiz Code", "log4j", "A logging library"),
    ("Code", "IaC Drift", "hard", "Wiz Code", "terraform", ""),
    ("Runtime", "Crypto Miner", "easy", "Wiz Defend", "xmrig", "Watch CPU usage"),
    ("Runtime", "Reverse Shell", "medium", "Wiz Sensor", "netcat", "A classic tool"),
    ("Runtime", "Container Escape", "hard", "Wiz Sensor", "privileged", "Check the pod spec"),
]


async def _call(session, method, url, headers, payload=None):
    async with session.request(method, url, json=payload, headers=headers) as resp:
        body = await resp.json()
        if resp.status >= 400:
            raise RuntimeError(f"{method} {url} failed ({resp.status}): {body}")
        return body


async def seed_catalog(session, base_url, event_code):
    """Create the questions, a question set grouping them and an event."""
    question_ids = {}
    answers = {}
    for category, title, difficulty, product, answer, hint in QUESTIONS:
        question = await _call(
            session,
            "POST",
            f"{base_url}/api/questions",
            ADMIN_HEADERS,
            {
                "title": title,
                "description": f"{title} challenge",
                "difficulty": difficulty,
                "product": product,
                "answer": answer,
                "hint": {"text": hint, "pointReduction": random.choice([10, 20, 25])},
            },
        )
        question_ids.setdefault(category, []).append(question["id"])
        answers[question["id"]] = answer

    question_set = await _call(
        session,
        "POST",
        f"{base_url}/api/question-sets",
        ADMIN_HEADERS,
        {
            "title": "Demo Set",
            "categories": [{"name": name, "questions": ids} for name, ids in question_ids.items()],
        },
    )

    event = await _call(
        session,
        "POST",
        f"{base_url}/api/events",
        ADMIN_HEADERS,
        {
            "name": f"Demo Event {event_code}",
            "questionSet": question_set["id"],
            "eventCode": event_code,
            "eventDate": (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat(),
            "duration": 240,
        },
    )
    return event, answers


async def play(session, base_url, event, answers, player_name):
    """Join the event and attempt every question once or twice."""
    headers = {
        "X-User-Id": player_name.lower(),
        "X-User-Display-Name": player_name,
        "X-User-Email": f"{player_name.lower()}@example.com",
        "X-User-Organization": random.choice(ORGANIZATIONS),
    }
    await _call(session, "POST", f"{base_url}/api/events/join", headers, {"eventCode": event["eventCode"]})

    solved = 0
    for question_id, answer in answers.items():
        if random.random() < 0.2:
            continue  # skipped

        url = f"{base_url}/api/events/{event['id']}/questions/{question_id}"
        if random.random() < 0.3:
            await _call(session, "GET", f"{url}/hint", headers)

        if random.random() < 0.25:
            await _call(session, "POST", f"{url}/answer", headers, {"answer": "wrong guess"})

        result = await _call(session, "POST", f"{url}/answer", headers, {"answer": answer.upper()})
        if result["points"]:
            solved += 1

    return solved


async def generate_test_data(base_url, players, event_code):
    """Generate an event with a crowd of players."""
    async with aiohttp.ClientSession() as session:
        event, answers = await seed_catalog(session, base_url, event_code)
        print(f"Created event {event['id']} ({event_code}) with {len(answers)} questions")

        names = random.sample(FIRST_NAMES, min(players, len(FIRST_NAMES)))
        results = await asyncio.gather(
            *(play(session, base_url, event, answers, name) for name in names)
        )

        print(f"{len(names)} players solved {sum(results)} questions in total")
        print(f"Leaderboard: {base_url}/events/{event['id']}/leaderboard")


def main():
    parser = argparse.ArgumentParser(description="CTF Events demo data generator")
    parser.add_argument("--url", default="http://localhost:8081", help="Server base URL")
    parser.add_argument("--players", type=int, default=12, help="Number of players")
    parser.add_argument("--code", default=f"DEMO{random.randint(1000, 9999)}", help="Event code")
    args = parser.parse_args()

    asyncio.run(generate_test_data(args.url.rstrip("/"), args.players, args.code))


if __name__ == "__main__":
    main()
