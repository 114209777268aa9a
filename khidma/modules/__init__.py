"""
Khidma Backend Modules

- auth: Phone OTP, users, sessions, refresh tokens
- categories: Service catalogue, pricing baselines, expert categorizers, settings
- onboarding: Worker verification steps, documents, skills
- uploads: Object storage for voice notes, photos and documents
- chats: Service, notification and conversation chats; bubbles; system messages
- jobs: Job lifecycle, start and completion codes, cancellation
- worker_jobs: Categorizer voting, bidder broadcast, bid submission
- bids: Customer bid decisions
- ratings: Post-completion ratings

Importing this package registers every model on the declarative base.
"""
from khidma.modules import (  # noqa: F401
    auth,
    bids,
    categories,
    chats,
    jobs,
    onboarding,
    ratings,
    uploads,
)
