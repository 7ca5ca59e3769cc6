import httpx
import pytest

from tourexec.exceptions import RoutingUnavailable
from tourexec.services.routing import osrm_client
from tourexec.services.routing.osrm_client import OSRMClient, decode_polyline

BERLIN = [(52.517037, 13.388860), (52.496891, 13.385983)]


def _client(handler, max_retries: int = 0) -> OSRMClient:
    return OSRMClient(
        base_url="http://osrm.test/",
        profile="driving",
        max_retries=max_retries,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def _table_payload(durations, distances):
    return {"code": "Ok", "durations": durations, "distances": distances}


def test_table_requests_lon_lat_pairs():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_table_payload([[0, 60], [70, 0]], [[0, 900], [950, 0]]))

    matrix = _client(handler).table(BERLIN)

    assert seen[0].url.path == "/table/v1/driving/13.38886,52.517037;13.385983,52.496891"
    assert seen[0].url.params["annotations"] == "duration,distance"
    assert matrix.leg(1, 0) == (950.0, 70.0)
    assert len(matrix) == 2


def test_server_errors_are_retried():
    responses = iter(
        [
            httpx.Response(502),
            httpx.Response(200, json=_table_payload([[0, 1], [1, 0]], [[0, 1], [1, 0]])),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    matrix = _client(handler, max_retries=1).table(BERLIN)

    assert matrix.durations == [[0.0, 1.0], [1.0, 0.0]]


def test_persistent_server_error_becomes_routing_unavailable():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(RoutingUnavailable):
        _client(handler, max_retries=2).table(BERLIN)

    assert len(calls) == 3


def test_client_errors_are_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"code": "InvalidQuery"})

    with pytest.raises(RoutingUnavailable):
        _client(handler, max_retries=2).table(BERLIN)

    assert len(calls) == 1


def test_network_failure_becomes_routing_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RoutingUnavailable):
        _client(handler, max_retries=1).table(BERLIN)


def test_error_code_in_payload_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoTable", "message": "no route"})

    with pytest.raises(RoutingUnavailable):
        _client(handler).table(BERLIN)


def test_unreachable_matrix_entries_are_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_table_payload([[0, None], [1, 0]], [[0, 1], [1, 0]]))

    with pytest.raises(RoutingUnavailable):
        _client(handler).table(BERLIN)


def test_route_returns_legs_and_geometry():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.startswith("/route/v1/driving/")
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "routes": [
                    {
                        "distance": 2500.0,
                        "duration": 300.0,
                        "geometry": "_p~iF~ps|U_ulLnnqC_mqNvxq`@",
                        "legs": [{"distance": 2500.0, "duration": 300.0}],
                    }
                ],
            },
        )

    summary = _client(handler).route(BERLIN)

    assert summary.total_distance_m == 2500.0
    assert summary.segments[0].duration_s == 300.0
    assert summary.segments[0].from_point == BERLIN[0]
    assert summary.geometry[0] == (38.5, -120.2)


def test_route_with_wrong_leg_count_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"code": "Ok", "routes": [{"distance": 1.0, "duration": 1.0, "legs": []}]},
        )

    with pytest.raises(RoutingUnavailable):
        _client(handler).route(BERLIN)


def test_at_least_two_coordinates_required():
    client = _client(lambda request: httpx.Response(200))

    with pytest.raises(ValueError):
        client.table(BERLIN[:1])


def test_decode_polyline():
    assert decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@") == [
        (38.5, -120.2),
        (40.7, -120.95),
        (43.252, -126.453),
    ]


def test_check_health_reports_unavailable(monkeypatch):
    class Unreachable:
        def __init__(self, *args, **kwargs):
            pass

        def table(self, coordinates):
            raise RoutingUnavailable("down")

    monkeypatch.setattr(osrm_client, "OSRMClient", Unreachable)

    assert osrm_client.check_health() is False
