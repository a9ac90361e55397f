"""
Request-scoped access to the services wired into the application at startup
"""

from fastapi import Request

from src.services.event_classifier import EventClassifier
from src.services.job_queue import JobQueue


def get_job_queue(request: Request) -> JobQueue:
    """Get the job queue the application was created with"""
    return request.app.state.job_queue


def get_event_classifier(request: Request) -> EventClassifier:
    """Get the event classifier the application was created with"""
    return request.app.state.event_classifier
