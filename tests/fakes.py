"""
Test doubles for the Clio API and the secret store.
"""
import json

import httpx


FIELD_ID = 463462
TOKEN_URL = "https://clio.test/oauth/token"
API_URL = "https://clio.test/api/v4"


class StaticSecrets:
    """Secret store backed by a dict."""

    def __init__(self, secrets=None):
        self.secrets = secrets if secrets is not None else {
            "lz-clio-v1-clientid": "cid",
            "lz-clio-v1-clientsecret": "csecret",
            "lz-clio-v1-refreshtoken": "rtoken",
        }

    def get_secret(self, name):
        return self.secrets.get(name)


class FakeClio:
    """
    In-memory Clio.

    matters maps a matter id (str) to its custom field values list. A
    matter id that is absent answers 404. Ids in fail_matters answer 500
    to PATCH and ids in unauthorized_matters answer 401.

    The token endpoint answers token_status, or the next entry of
    token_statuses while any remain; token_body replaces its JSON with raw
    text. Each successful exchange issues a new token (access-1, access-2...).

    search_results maps display numbers to the matter returned by
    GET /matters?query=...
    """

    def __init__(
        self,
        matters=None,
        fail_matters=(),
        token_status=200,
        unauthorized_matters=(),
        token_statuses=(),
        token_body=None,
        search_results=None,
    ):
        self.matters = {str(k): list(v) for k, v in (matters or {}).items()}
        self.fail_matters = {str(m) for m in fail_matters}
        self.unauthorized_matters = {str(m) for m in unauthorized_matters}
        self.token_status = token_status
        self.token_statuses = list(token_statuses)
        self.token_body = token_body
        self.search_results = dict(search_results or {})
        self.requests = []
        self.tokens_issued = 0
        self._next_value_id = 9000

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith(TOKEN_URL):
            status = self.token_statuses.pop(0) if self.token_statuses else self.token_status
            if status != 200:
                return httpx.Response(status, json={"error": "invalid_grant"})
            if self.token_body is not None:
                return httpx.Response(200, text=self.token_body)
            self.tokens_issued += 1
            return httpx.Response(200, json={"access_token": f"access-{self.tokens_issued}", "expires_in": 3600})

        path = request.url.path
        if path == "/api/v4/matters" and request.method == "GET":
            query = request.url.params.get("query", "")
            found = [m for number, m in self.search_results.items() if query in number]
            return httpx.Response(200, json={"data": found})
        if path.startswith("/api/v4/matters/"):
            matter_id = path.rsplit("/", 1)[-1].replace(".json", "")
            if matter_id not in self.matters:
                return httpx.Response(404, text="Not Found")
            if request.method == "GET":
                return httpx.Response(
                    200, json={"data": {"id": int(matter_id), "custom_field_values": self.matters[matter_id]}}
                )
            if request.method == "PATCH":
                if matter_id in self.unauthorized_matters:
                    return httpx.Response(401, text="Unauthorized")
                if matter_id in self.fail_matters:
                    return httpx.Response(500, text="Internal Server Error")
                self._apply(matter_id, json.loads(request.content)["data"]["custom_field_values"])
                return httpx.Response(200, json={"data": {"id": int(matter_id)}})

        return httpx.Response(404, text="Not Found")

    def _apply(self, matter_id, values):
        stored = self.matters[matter_id]
        for value in values:
            if value.get("_destroy"):
                stored[:] = [v for v in stored if v["id"] != value["id"]]
            elif value.get("id"):
                for v in stored:
                    if v["id"] == value["id"]:
                        v["value"] = value["value"]
            else:
                self._next_value_id += 1
                stored.append({
                    "id": self._next_value_id,
                    "custom_field": {"id": value["custom_field"]["id"]},
                    "value": value["value"],
                })

    def field_value(self, matter_id):
        for v in self.matters[str(matter_id)]:
            if v["custom_field"]["id"] == FIELD_ID:
                return v.get("value")
        return None

    def calls(self, method, path_part=""):
        return [r for r in self.requests if r.method == method and path_part in str(r.url)]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

