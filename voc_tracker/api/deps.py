from fastapi import Request

from voc_tracker.services.tracker import EmissionsTracker


def get_tracker(request: Request) -> EmissionsTracker:
    return request.app.state.tracker
