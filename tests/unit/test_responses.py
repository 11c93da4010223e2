"""Unit tests for the API response envelope."""

import json
from datetime import datetime, timezone

from ballot.core.responses import error_response_dict, success_response
from ballot.services.models import Candidate


def test_success_response_dumps_models():
    body = success_response(data=[Candidate(id=1, name="Alice", proposal="Parks")])

    assert body["success"] is True
    assert body["data"][0] == {"id": 1, "name": "Alice", "proposal": "Parks", "vote_count": 0}


def test_error_response_encodes_datetimes():
    when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    response = error_response_dict(
        {"success": False, "message": "Election has ended", "errors": {"at": when}},
        status_code=409,
    )

    assert response.status_code == 409
    assert json.loads(response.body)["errors"]["at"] == "2024-05-01T12:00:00+00:00"
