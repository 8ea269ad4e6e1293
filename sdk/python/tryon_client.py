import json
import os
import time
from typing import Dict, Optional

import requests


class TryOnClient:
    def __init__(self, base_url: str = "http://127.0.0.1:8000", user_id: Optional[str] = None, api_key: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: Dict[str, str] = {}
        if api_key:
            self.headers["x-api-key"] = api_key
        elif user_id:
            self.headers["x-user-id"] = user_id

    def try_on(
        self,
        model_image_path: str,
        top_image_path: Optional[str] = None,
        bottom_image_path: Optional[str] = None,
        garment_type: Optional[str] = None,
        output_count: int = 1,
        seed: Optional[int] = None,
    ) -> str:
        """Submit uploaded images. A single garment goes in top_image_path; garment_type overrides its type."""
        url = f"{self.base_url}/v1/jobs/tryon"
        files = {
            "model_image": (os.path.basename(model_image_path), open(model_image_path, "rb"), "image/jpeg"),
        }
        data: Dict[str, str] = {"output_count": str(output_count)}
        if seed is not None:
            data["seed"] = str(seed)
        if bottom_image_path:
            data["garment_mode"] = "multiple"
            garment_data: Dict[str, dict] = {}
            if top_image_path:
                files["top_garment_image"] = (os.path.basename(top_image_path), open(top_image_path, "rb"), "image/jpeg")
                if garment_type:
                    garment_data["top"] = {"garment_type": garment_type}
            files["bottom_garment_image"] = (
                os.path.basename(bottom_image_path),
                open(bottom_image_path, "rb"),
                "image/jpeg",
            )
            data["garment_data"] = json.dumps(garment_data)
        else:
            data["garment_mode"] = "single"
            if top_image_path:
                files["single_garment_image"] = (os.path.basename(top_image_path), open(top_image_path, "rb"), "image/jpeg")
            if garment_type:
                data["garment_data"] = json.dumps({"garment_type": garment_type})
        try:
            r = requests.post(url, files=files, data=data, headers=self.headers, timeout=60)
        finally:
            for _, handle, _ in files.values():
                handle.close()
        r.raise_for_status()
        return r.json()["job_id"]

    def job_status(self, job_id: str) -> dict:
        r = requests.get(f"{self.base_url}/v1/jobs/{job_id}", headers=self.headers, timeout=30)
        r.raise_for_status()
        return r.json()

    def wait_for_result(self, job_id: str, timeout_s: int = 300, interval_s: float = 2.0) -> dict:
        deadline = time.time() + timeout_s
        last = None
        while time.time() < deadline:
            last = self.job_status(job_id)
            if last.get("status") in ("completed", "failed"):
                return last
            time.sleep(interval_s)
        return last or {"status": "timeout", "job_id": job_id}

    def download_result(self, reference: str) -> bytes:
        r = requests.get(f"{self.base_url}{reference}", timeout=60)
        r.raise_for_status()
        return r.content

    def download_result_to(self, reference: str, out_path: str) -> str:
        data = self.download_result(reference)
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        with open(out_path, "wb") as f:
            f.write(data)
        return out_path
