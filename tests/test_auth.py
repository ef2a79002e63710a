from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Response

from trendstream.auth import TokenAuth, constant_time_equal


def _no_content(request):
    return Response(status=204)


def _request(authorization=None):
    headers = {} if authorization is None else {"Authorization": authorization}
    return EnvironBuilder(path="/", headers=headers).get_request()


def test_allows_valid_bearer_token():
    handler = TokenAuth("secret").wrap(_no_content)
    assert handler(_request("Bearer secret")).status_code == 204


def test_rejects_missing_header():
    handler = TokenAuth("secret").wrap(_no_content)
    response = handler(_request())
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_rejects_malformed_header():
    handler = TokenAuth("secret").wrap(_no_content)
    assert handler(_request("Token secret")).status_code == 401


def test_rejects_invalid_token():
    handler = TokenAuth("secret").wrap(_no_content)
    assert handler(_request("Bearer token")).status_code == 403


def test_rejects_empty_configured_token():
    handler = TokenAuth("").wrap(_no_content)
    response = handler(_request("Bearer secret"))
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "admin token is not configured\n"


def test_rejects_blank_configured_token():
    handler = TokenAuth("   ").wrap(_no_content)
    assert handler(_request("Bearer secret")).status_code == 500


def test_passes_path_arguments_through():
    def echo(request, term):
        return Response(term, status=200)

    handler = TokenAuth("secret").wrap(echo)
    response = handler(_request("Bearer secret"), term="casino")
    assert response.get_data(as_text=True) == "casino"


def test_constant_time_equal():
    assert constant_time_equal("secret", "secret")
    assert not constant_time_equal("secret", "token")
    assert not constant_time_equal("secret", "secre")
    assert constant_time_equal("", "")