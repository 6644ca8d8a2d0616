"""Tests for BusDataClient and BusTrackConfig."""

import os
import unittest
from unittest.mock import patch, MagicMock
import sys
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlsplit

import requests

# Add src to path so we can import bustrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bustrack.api_client import BusDataClient
from bustrack.config import BusTrackConfig
from bustrack.errors import CapabilityUnavailableError, ResponseFormatError, TransportError
from bustrack.models import BoundingBox

GOOGLE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _response(payload=None, status_code=200, reason="OK"):
    response = MagicMock()
    response.ok = 200 <= status_code < 300
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = payload
    return response


class TestBusTrackConfig(unittest.TestCase):
    """Test configuration defaults, URL building and environment loading."""

    def test_defaults(self):
        config = BusTrackConfig()
        self.assertEqual(config.refresh_interval_ms, 30000)
        self.assertEqual(config.refresh_interval, 30.0)
        self.assertEqual(config.bbox_radius, 0.01)
        self.assertEqual(config.default_bounds.corners(), [[1.2, 103.6], [1.5, 104.0]])
        self.assertFalse(config.realtime_positions_available)

    def test_config_is_immutable(self):
        config = BusTrackConfig()
        with self.assertRaises(AttributeError):
            config.refresh_interval_ms = 1000

    def test_rejects_bad_interval(self):
        with self.assertRaises(ValueError):
            BusTrackConfig(refresh_interval_ms=0)

    def test_get_api_url(self):
        config = BusTrackConfig(api_base_url="https://example.com/api/")
        self.assertEqual(
            config.get_api_url("/arrivals", {"busStopCode": "65011", "limit": None}),
            "https://example.com/api/arrivals?busStopCode=65011",
        )
        self.assertEqual(config.get_api_url("/bus-routes"), "https://example.com/api/bus-routes")

    def test_get_api_url_through_proxy(self):
        config = BusTrackConfig(api_base_url="https://example.com/api", proxy_url="/api/proxy")
        url = config.get_api_url("/arrivals", {"busStopCode": "65011"})
        self.assertTrue(url.startswith("/api/proxy?url="))
        target = unquote(url[len("/api/proxy?url="):])
        self.assertEqual(target, "https://example.com/api/arrivals?busStopCode=65011")

    def test_from_env(self):
        env = {
            "BUSTRACK_API_BASE_URL": "https://bus.example.com",
            "BUSTRACK_REFRESH_INTERVAL_MS": "15000",
            "BUSTRACK_BBOX_RADIUS": "0.02",
            "BUSTRACK_REALTIME_POSITIONS": "true",
        }
        with patch.dict(os.environ, env, clear=True):
            config = BusTrackConfig.from_env()
        self.assertEqual(config.api_base_url, "https://bus.example.com")
        self.assertEqual(config.refresh_interval_ms, 15000)
        self.assertEqual(config.bbox_radius, 0.02)
        self.assertTrue(config.realtime_positions_available)
        self.assertIsNone(config.proxy_url)

    def test_from_env_invalid_number(self):
        with patch.dict(os.environ, {"BUSTRACK_REFRESH_INTERVAL_MS": "soon"}, clear=True):
            with self.assertRaisesRegex(ValueError, "BUSTRACK_REFRESH_INTERVAL_MS"):
                BusTrackConfig.from_env()


class TestBusDataClient(unittest.TestCase):
    """Test HTTP requests and error mapping with a mocked session."""

    def setUp(self):
        self.session = MagicMock()
        self.config = BusTrackConfig(api_base_url="https://example.com/api")
        self.client = BusDataClient(self.config, session=self.session)

    def _requested_url(self, call_index=-1):
        return self.session.get.call_args_list[call_index][0][0]

    def test_get_arrivals(self):
        self.session.get.return_value = _response({
            "success": True,
            "data": {"arrivals": [
                {"serviceNo": "10", "operator": "SBST", "buses": []},
                {"serviceNo": "3", "operator": "SBST", "buses": []},
            ]},
        })

        arrivals = self.client.get_arrivals("65011", service_no="10")

        self.assertEqual([a.service_no for a in arrivals], ["10"])
        self.assertEqual(self._requested_url(), "https://example.com/api/arrivals?busStopCode=65011")
        kwargs = self.session.get.call_args[1]
        self.assertEqual(kwargs["headers"], {"Cache-Control": "no-cache"})
        self.assertEqual(kwargs["timeout"], self.config.request_timeout)

    def test_get_stops_sends_bbox(self):
        self.session.get.return_value = _response({"success": True, "data": {"stops": {}}})
        bbox = BoundingBox(min_lat=1.25, min_lon=103.5, max_lat=1.75, max_lon=104.0)

        self.assertEqual(self.client.get_stops(bbox, limit=200), [])

        query = parse_qs(urlsplit(self._requested_url()).query)
        self.assertEqual(query["bbox"], ["103.5,1.25,104.0,1.75"])
        self.assertEqual(query["limit"], ["200"])
        self.assertNotIn("service", query)

    def test_get_route_prefers_geojson(self):
        self.session.get.return_value = _response(
            {"success": True, "data": {"routes": {"10": {"polylines": [GOOGLE_POLYLINE]}}}}
        )
        route = self.client.get_route("10")
        self.assertEqual(len(route.patterns), 1)
        self.assertEqual(self.session.get.call_count, 1)
        self.assertIn("format=geojson", self._requested_url())

    def test_get_route_falls_back_to_plain_format(self):
        self.session.get.side_effect = [
            _response(status_code=400, reason="Bad Request"),
            _response({"success": True, "data": {"routes": {}}}),
        ]
        self.assertIsNone(self.client.get_route("10"))
        self.assertEqual(self.session.get.call_count, 2)
        self.assertNotIn("format=geojson", self._requested_url())

    def test_get_route_network_error_is_not_retried(self):
        self.session.get.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(TransportError):
            self.client.get_route("10")
        self.assertEqual(self.session.get.call_count, 1)

    def test_non_2xx_raises_transport_error(self):
        self.session.get.return_value = _response(status_code=503, reason="Service Unavailable")
        with self.assertRaises(TransportError) as ctx:
            self.client.get_arrivals("65011")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(str(ctx.exception), "HTTP 503: Service Unavailable")

    def test_network_error_raises_transport_error(self):
        self.session.get.side_effect = requests.Timeout("timed out")
        with self.assertRaises(TransportError) as ctx:
            self.client.get_arrivals("65011")
        self.assertIsNone(ctx.exception.status_code)

    def test_invalid_json_raises_format_error(self):
        response = _response()
        response.json.side_effect = ValueError("No JSON object could be decoded")
        self.session.get.return_value = response
        with self.assertRaises(ResponseFormatError):
            self.client.get_arrivals("65011")

    def test_positions_unavailable(self):
        with self.assertRaisesRegex(CapabilityUnavailableError, "not available"):
            self.client.get_positions("10")
        self.session.get.assert_not_called()

    def test_positions_available(self):
        client = BusDataClient(
            BusTrackConfig(api_base_url="https://example.com/api", realtime_positions_available=True),
            session=self.session,
        )
        self.session.get.return_value = _response(
            {"data": {"positions": [{"serviceNo": "10", "latitude": 1.39, "longitude": 103.89}]}}
        )
        positions = client.get_positions("10")
        self.assertEqual(len(positions), 1)
        self.assertEqual(self._requested_url(), "https://example.com/api/realtime?serviceNo=10")

    def test_close_leaves_shared_session_open(self):
        self.client.close()
        self.session.close.assert_not_called()

    @patch("bustrack.api_client.requests.Session")
    def test_close_owned_session(self, mock_session_cls):
        client = BusDataClient(self.config)
        client.close()
        mock_session_cls.return_value.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
