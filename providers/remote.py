from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional

import anyio
import requests
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from pipeline.classifier import garment_parameter
from pipeline.errors import BackendErrorKind, BackendInvocationError, ConfigurationError
from pipeline.io_types import BackendOptions, GarmentInput


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "omnious/vella-1.5"
DEFAULT_BASE_URL = "https://api.replicate.com/v1"
TERMINAL_PREDICTION_STATUSES = frozenset({"succeeded", "failed", "canceled"})


def image_data_uri(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        mime = "image/png"
    elif data.startswith(b"\xff\xd8"):
        mime = "image/jpeg"
    elif data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        mime = "image/webp"
    else:
        mime = "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body.get("title") or body)[:200]
    return str(body)[:200]


class RemoteBackend:
    """
    Try-on backend hosted on Replicate.
    - Creates a prediction in synchronous ("Prefer: wait") mode.
    - Polls the prediction until it reaches a terminal status or the timeout expires.
    - Returns the prediction's output value as-is; shape handling is left to the normalizer.
    """

    name = "remote"

    def __init__(
        self,
        api_token: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_token:
            raise ConfigurationError("REPLICATE_API_TOKEN is required")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})

    def _create_url_and_body(self, model_input: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        if ":" in self.model:
            _, version = self.model.split(":", 1)
            return f"{self.base_url}/predictions", {"version": version, "input": model_input}
        return f"{self.base_url}/models/{self.model}/predictions", {"input": model_input}

    def build_input(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> Dict[str, Any]:
        model_input: Dict[str, Any] = {
            "model_image": image_data_uri(model_image),
            "garment_type": options.category,
            "num_outputs": options.output_count,
            "seed": options.seed,
        }
        for g in garments:
            model_input[garment_parameter(g.type)] = image_data_uri(g.image_bytes)
        return model_input

    def _check(self, resp: requests.Response) -> Dict[str, Any]:
        if resp.status_code in (401, 403):
            raise BackendInvocationError(BackendErrorKind.AUTH, _error_detail(resp))
        if resp.status_code == 413:
            raise BackendInvocationError(BackendErrorKind.IMAGE_SIZE, _error_detail(resp))
        if resp.status_code in (400, 422):
            err = BackendInvocationError.from_message(_error_detail(resp))
            if err.kind is BackendErrorKind.UNKNOWN:
                err = BackendInvocationError(BackendErrorKind.PARAMETER, err.detail)
            raise err
        if resp.status_code >= 400:
            raise BackendInvocationError.from_message(f"HTTP {resp.status_code}: {_error_detail(resp)}")
        try:
            return resp.json()
        except ValueError as e:
            raise BackendInvocationError(BackendErrorKind.UNKNOWN, "Unexpected response from Replicate") from e

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise BackendInvocationError(BackendErrorKind.TIMEOUT, str(e)) from e
        except requests.RequestException as e:
            raise BackendInvocationError.from_message(str(e)) from e
        return self._check(resp)

    def _get_prediction(self, url: str) -> Dict[str, Any]:
        return self._request("GET", url)

    def _wait(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        if prediction.get("status") in TERMINAL_PREDICTION_STATUSES:
            return prediction
        poll_url = (prediction.get("urls") or {}).get("get")
        if not poll_url:
            raise BackendInvocationError(BackendErrorKind.UNKNOWN, "Prediction has no polling URL")
        retryer = Retrying(
            retry=retry_if_result(lambda p: p.get("status") not in TERMINAL_PREDICTION_STATUSES),
            wait=wait_fixed(self.poll_interval),
            stop=stop_after_delay(self.timeout),
        )
        try:
            return retryer(self._get_prediction, poll_url)
        except RetryError as e:
            raise BackendInvocationError(BackendErrorKind.TIMEOUT, "Prediction did not finish in time") from e

    def run(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> Any:
        model_input = self.build_input(model_image, garments, options)
        url, body = self._create_url_and_body(model_input)
        logger.info(
            "Creating prediction on %s (garment_type=%s, num_outputs=%d, params=%s)",
            self.model,
            options.category,
            options.output_count,
            sorted(k for k in model_input if k.endswith("_image")),
        )
        prediction = self._request("POST", url, json=body, headers={"Prefer": "wait"})
        prediction = self._wait(prediction)
        status = prediction.get("status")
        if status == "failed":
            raise BackendInvocationError.from_message(str(prediction.get("error") or "prediction failed"))
        if status == "canceled":
            raise BackendInvocationError(BackendErrorKind.UNKNOWN, "Prediction was canceled")
        output = prediction.get("output")
        logger.info(
            "Prediction %s finished; output is %s",
            prediction.get("id"),
            f"a list of {len(output)}" if isinstance(output, list) else type(output).__name__,
        )
        return output

    async def invoke(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> Any:
        return await anyio.to_thread.run_sync(self.run, model_image, garments, options)
