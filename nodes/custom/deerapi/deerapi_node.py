import base64
import logging
from typing import Any

from config.settings import load_settings
from core.api_key_vault import APIKeyVault
from core.types_registry import (
    BinaryMap,
    NodeCategory,
    NodeExecutionError,
    ParamMeta,
    StoryboardShot,
    WorkflowItem,
    get_type,
)
from core.workflow_data import WorkflowDataProxy
from nodes.base.base_node import Base
from services.binary_collector import (
    DEFAULT_BINARY_PROPERTY_NAMES,
    CollectedBinary,
    ImageData,
    collect_binary_from_nodes,
    extract_images_from_binary,
    parse_name_list,
)
from services.binary_data_service import BinaryDataStore, get_binary_data_store
from services.deerapi_service import (
    DeerAPIClient,
    DeerAPIResponseError,
    extract_gemini_image,
    extract_seedream_image,
)

logger = logging.getLogger(__name__)

GEMINI_IMAGE_MODELS = ["gemini-3-pro-image", "gemini-2.5-flash-image"]
SEEDREAM_IMAGE_MODEL = "doubao-seedream-4-5-251128"
REFERENCE_DOCUMENT_LABEL = "[Reference document]:"

_VIDEO_CREATE = {"mode": ["video"], "video_operation": ["create"]}
_USES_BINARY = {
    "show": {"mode": ["text", "image", "video"]},
    "hide": {"video_operation": ["remix", "retrieve", "download", "list"]},
}


class DeerAPI(Base):
    """
    Calls DeerAPI for text generation, image generation, Sora 2 video jobs and embeddings.

    Image attachments on the incoming items (or on the outputs of other named nodes)
    are forwarded as reference images for text, image and video creation.

    Inputs:
    - items: List[WorkflowItem] (optional; a single empty item is processed when absent)

    Outputs:
    - items: List[WorkflowItem] (one output item per input item)

    Properties: see params_meta; which fields apply depends on mode and video_operation.
    """

    inputs = {"items": get_type("WorkflowItemList") | None}
    outputs = {"items": get_type("WorkflowItemList")}

    CATEGORY = NodeCategory.MEDIA

    required_keys = ["DEERAPI_API_KEY"]

    default_params = {
        "continue_on_fail": False,
    }

    params_meta: list[ParamMeta] = [
        {
            "name": "mode",
            "label": "Mode",
            "type": "combo",
            "default": "text",
            "options": ["text", "image", "video", "embeddings"],
        },
        {
            "name": "video_operation",
            "label": "Operation",
            "type": "combo",
            "default": "create",
            "options": ["create", "remix", "retrieve", "download", "list"],
            "display_options": {"show": {"mode": ["video"]}},
        },
        {
            "name": "image_model",
            "label": "Model",
            "type": "combo",
            "default": "gemini-3-pro-image",
            "options": [*GEMINI_IMAGE_MODELS, SEEDREAM_IMAGE_MODEL],
            "display_options": {"show": {"mode": ["image"]}},
        },
        {
            "name": "video_model",
            "label": "Model",
            "type": "combo",
            "default": "sora-2-all",
            "options": ["sora-2-all", "sora-2-pro-all"],
            "display_options": {"show": _VIDEO_CREATE},
        },
        {
            "name": "model_id",
            "label": "Model ID",
            "type": "text",
            "default": "gemini-3-pro-preview",
            "required": True,
            "display_options": {"show": {"mode": ["text"]}},
        },
        {
            "name": "system_prompt",
            "label": "System Prompt",
            "type": "textarea",
            "default": "You are a professional assistant.",
            "display_options": {"show": {"mode": ["text"]}},
        },
        {
            "name": "user_prompt",
            "label": "User Prompt",
            "type": "textarea",
            "default": "",
            "required": True,
            "display_options": {"show": {"mode": ["text", "image"]}},
        },
        {
            "name": "storyboard_mode",
            "label": "Storyboard Mode",
            "type": "boolean",
            "default": False,
            "description": "Describe the video shot by shot; the shots are combined into one prompt",
            "display_options": {"show": _VIDEO_CREATE},
        },
        {
            "name": "storyboard_shots",
            "label": "Shots",
            "type": "collection",
            "placeholder": "Add Shot",
            "default": [
                {"shot_prompt": "Describe the first shot", "duration": 5},
                {"shot_prompt": "Describe the second shot", "duration": 5},
            ],
            "fields": [
                {"name": "shot_prompt", "label": "Shot Description", "type": "textarea", "default": "", "required": True},
                {"name": "duration", "label": "Duration", "type": "number", "default": 5, "unit": "s"},
            ],
            "display_options": {"show": {**_VIDEO_CREATE, "storyboard_mode": [True]}},
        },
        {
            "name": "video_prompt",
            "label": "Video Prompt",
            "type": "textarea",
            "default": "",
            "required": True,
            "display_options": {
                "show": {"mode": ["video"], "video_operation": ["create", "remix"]},
                "hide": {"storyboard_mode": [True]},
            },
        },
        {
            "name": "video_size",
            "label": "Resolution",
            "type": "combo",
            "default": "720x1280",
            "options": ["720x1280", "1280x720", "1024x1792", "1792x1024"],
            "display_options": {"show": _VIDEO_CREATE},
        },
        {
            "name": "video_id",
            "label": "Video ID",
            "type": "text",
            "default": "",
            "required": True,
            "display_options": {
                "show": {"mode": ["video"], "video_operation": ["remix", "retrieve", "download"]}
            },
        },
        {
            "name": "smart_wait",
            "label": "Wait For Completion",
            "type": "boolean",
            "default": True,
            "description": "Poll the job every 15 seconds until it completes or fails (10 minutes at most)",
            "display_options": {"show": {"mode": ["video"], "video_operation": ["retrieve"]}},
        },
        {
            "name": "image_size",
            "label": "Resolution",
            "type": "combo",
            "default": "1K",
            "options": ["1K", "2K", "4K"],
            "display_options": {"show": {"mode": ["image"], "image_model": ["gemini-3-pro-image"]}},
        },
        {
            "name": "image_size",
            "label": "Resolution",
            "type": "combo",
            "default": "2K",
            "options": ["2K", "4K"],
            "display_options": {"show": {"mode": ["image"], "image_model": [SEEDREAM_IMAGE_MODEL]}},
        },
        {
            "name": "aspect_ratio",
            "label": "Aspect Ratio",
            "type": "combo",
            "default": "1:1",
            "options": ["1:1", "3:2", "2:3", "16:9", "9:16", "3:4", "4:3", "4:5", "5:4", "21:9"],
            "display_options": {"show": {"mode": ["image"], "image_model": GEMINI_IMAGE_MODELS}},
        },
        {
            "name": "embedding_model",
            "label": "Embedding Model",
            "type": "combo",
            "default": "text-embedding-3-large",
            "options": ["text-embedding-3-large", "text-embedding-3-small"],
            "display_options": {"show": {"mode": ["embeddings"]}},
        },
        {
            "name": "embedding_input",
            "label": "Input Text",
            "type": "textarea",
            "default": "",
            "required": True,
            "description": "Text to embed",
            "display_options": {"show": {"mode": ["embeddings"]}},
        },
        {
            "name": "binary_source_mode",
            "label": "Binary Source",
            "type": "combo",
            "default": "current",
            "options": ["current", "specified"],
            "description": "Read image attachments from this node's input or from named nodes",
            "display_options": _USES_BINARY,
        },
        {
            "name": "source_node_names",
            "label": "Source Node Names",
            "type": "text",
            "default": "",
            "placeholder": "HTTP Request, Read File, Code",
            "description": "Comma separated node names (exact match)",
            "display_options": {"show": {"binary_source_mode": ["specified"]}},
        },
        {
            "name": "binary_property_name",
            "label": "Image Properties",
            "type": "text",
            "default": DEFAULT_BINARY_PROPERTY_NAMES,
            "description": "Attachments used as the reference image for text, image and video creation",
            "display_options": _USES_BINARY,
        },
        {
            "name": "continue_on_fail",
            "label": "Continue On Fail",
            "type": "boolean",
            "default": False,
            "description": "Output an error item instead of failing the node",
        },
    ]

    def __init__(
        self, id: int, params: dict[str, Any], graph_context: dict[str, Any] | None = None
    ):
        super().__init__(id, params, graph_context)
        self.vault = APIKeyVault()
        self.settings = load_settings()
        self.binary_store: BinaryDataStore = get_binary_data_store()

    def _create_client(self) -> DeerAPIClient:
        api_key = (self.vault.get("DEERAPI_API_KEY") or "").strip()
        if not api_key:
            raise ValueError("DEERAPI_API_KEY not found in vault")
        base_url = self.vault.get("DEERAPI_BASE_URL") or self.settings.deerapi_base_url
        return DeerAPIClient(
            api_key=api_key,
            base_url=base_url,
            timeout_s=self.settings.request_timeout_s,
            download_timeout_s=self.settings.download_timeout_s,
        )

    async def _execute_impl(self, inputs: dict[str, Any]) -> dict[str, Any]:
        raw_items = inputs.get("items")
        # Without an upstream connection the node still runs once, like a manual trigger
        items: list[WorkflowItem] = [{"json": {}}] if raw_items is None else list(raw_items)
        client = self._create_client()
        mode = str(self.get_param("mode", "text"))
        continue_on_fail = bool(self.get_param("continue_on_fail", False))

        results: list[WorkflowItem] = []
        for index in range(len(items)):
            if self._is_stopped:
                break
            self.report_progress(index / len(items) * 100.0, f"{mode} {index + 1}/{len(items)}")
            try:
                results.append(await self._process_item(client, mode, items, index))
            except Exception as e:
                if continue_on_fail:
                    logger.warning(f"DeerAPI node {self.id}: item {index} failed: {e}")
                    results.append({"json": {"error": str(e)}})
                    continue
                raise NodeExecutionError(self.id, str(e), original_exc=e) from e

        return {"items": results}

    async def _process_item(
        self, client: DeerAPIClient, mode: str, items: list[WorkflowItem], index: int
    ) -> WorkflowItem:
        if mode == "text":
            return await self._generate_text(client, items, index)
        if mode == "image":
            return await self._generate_image(client, items, index)
        if mode == "video":
            return await self._run_video_operation(client, items, index)
        if mode == "embeddings":
            model = str(self.get_param("embedding_model"))
            text = str(self.get_param("embedding_input") or "")
            return {"json": await client.create_embeddings(model, text)}
        raise ValueError(f"Unsupported mode: {mode}")

    # ============================================================================
    # Reference images
    # ============================================================================

    async def _collect_binary(self, items: list[WorkflowItem], index: int) -> CollectedBinary:
        source_mode = self.get_param("binary_source_mode", "current")
        if source_mode not in ("current", "specified"):
            source_mode = "current"
        specified_nodes = parse_name_list(self.get_param("source_node_names", ""))
        return await collect_binary_from_nodes(
            items,
            index,
            source_mode,
            specified_nodes,
            WorkflowDataProxy(self.graph_context),
            self.binary_store,
        )

    async def _reference_images(
        self, items: list[WorkflowItem], index: int, max_images: int
    ) -> list[ImageData]:
        prop_names = parse_name_list(
            self.get_param("binary_property_name", DEFAULT_BINARY_PROPERTY_NAMES)
        )
        collected = await self._collect_binary(items, index)
        return await extract_images_from_binary(
            collected.binary, prop_names, max_images, collected.buffers, self.binary_store
        )

    async def _binary_output(self, b64_data: str, file_name: str, mime_type: str) -> BinaryMap:
        content = base64.b64decode(b64_data)
        return {"data": await self.binary_store.prepare_binary_data(content, file_name, mime_type)}

    # ============================================================================
    # Modes
    # ============================================================================

    @staticmethod
    def _combine_prompt(user_prompt: str, item: WorkflowItem) -> str:
        extracted = (item.get("json") or {}).get("text")
        if not isinstance(extracted, str) or not extracted.strip():
            return user_prompt
        if user_prompt:
            return f"{user_prompt}\n\n{REFERENCE_DOCUMENT_LABEL}\n{extracted}"
        return extracted

    async def _generate_text(
        self, client: DeerAPIClient, items: list[WorkflowItem], index: int
    ) -> WorkflowItem:
        user_prompt = str(self.get_param("user_prompt") or "")
        model = str(self.get_param("model_id"))
        system_prompt = str(self.get_param("system_prompt") or "")
        combined = self._combine_prompt(user_prompt, items[index])

        images = await self._reference_images(items, index, max_images=1)
        user_content: str | list[dict[str, Any]] = combined
        if images:
            user_content = [
                {"type": "text", "text": combined},
                {"type": "image_url", "image_url": {"url": images[0].data_url}},
            ]

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        return {"json": await client.chat_completion(model, messages)}

    async def _generate_image(
        self, client: DeerAPIClient, items: list[WorkflowItem], index: int
    ) -> WorkflowItem:
        user_prompt = str(self.get_param("user_prompt") or "")
        image_model = str(self.get_param("image_model"))
        images = await self._reference_images(items, index, max_images=3)

        if image_model in GEMINI_IMAGE_MODELS:
            parts: list[dict[str, Any]] = [{"text": user_prompt}]
            for image in images:
                parts.append({"inline_data": {"data": image.base64, "mime_type": image.mime_type}})

            generation_config: dict[str, Any] = {
                "aspectRatio": self.get_param("aspect_ratio"),
                "responseModalities": ["IMAGE"],
            }
            # Only the pro model accepts an explicit output size
            if image_model == "gemini-3-pro-image":
                generation_config["imageSize"] = self.get_param("image_size")

            response = await client.generate_content(
                image_model, [{"role": "user", "parts": parts}], generation_config
            )
            b64_data = extract_gemini_image(response)
            if not b64_data:
                raise DeerAPIResponseError("Gemini API returned no image.")
            file_name = (
                "gemini_flash_image.png"
                if image_model == "gemini-2.5-flash-image"
                else "gemini_image.png"
            )
            binary = await self._binary_output(b64_data, file_name, "image/png")
            return {"json": {"status": "success"}, "binary": binary}

        body: dict[str, Any] = {
            "model": image_model,
            "prompt": user_prompt,
            "size": self.get_param("image_size"),
            "n": 1,
            "response_format": "b64_json",
            "watermark": True,
        }
        data_urls = [image.data_url for image in images]
        if len(data_urls) == 1:
            body["image"] = data_urls[0]
        elif data_urls:
            body["image"] = data_urls

        response = await client.generate_image(body)
        b64_data = extract_seedream_image(response)
        if not b64_data:
            raise DeerAPIResponseError("Seedream API returned no image.")
        binary = await self._binary_output(b64_data, "doubao_image.png", "image/png")
        return {"json": {"status": "success"}, "binary": binary}

    # ============================================================================
    # Video jobs
    # ============================================================================

    @staticmethod
    def _format_duration(duration: Any) -> str:
        if isinstance(duration, float) and duration.is_integer():
            return str(int(duration))
        return str(duration)

    @staticmethod
    def parse_storyboard_shots(shots_param: Any) -> list[StoryboardShot]:
        """Accepts a bare list of shots or the collection form {"shots": [...]}."""
        shots = shots_param.get("shots") if isinstance(shots_param, dict) else shots_param
        if not isinstance(shots, list):
            return []
        return [StoryboardShot(**shot) if isinstance(shot, dict) else StoryboardShot() for shot in shots]

    @classmethod
    def build_storyboard_prompt(cls, shots_param: Any) -> str:
        """Join storyboard shots into the multi-shot prompt format."""
        blocks = []
        for number, shot in enumerate(cls.parse_storyboard_shots(shots_param), start=1):
            duration = cls._format_duration(shot.get("duration", 5))
            blocks.append(
                f"Shot {number}:\nduration: {duration}sec\nScene: {shot.get('shot_prompt', '')}"
            )
        return "\n\n".join(blocks)

    async def _run_video_operation(
        self, client: DeerAPIClient, items: list[WorkflowItem], index: int
    ) -> WorkflowItem:
        operation = str(self.get_param("video_operation", "create"))

        if operation == "create":
            if self.get_param("storyboard_mode", False):
                prompt = self.build_storyboard_prompt(self.get_param("storyboard_shots"))
            else:
                prompt = str(self.get_param("video_prompt") or "")
            model = str(self.get_param("video_model"))
            size = str(self.get_param("video_size"))

            images = await self._reference_images(items, index, max_images=1)
            reference = None
            if images:
                image = images[0]
                reference = (image.file_name or "reference.jpg", image.content, image.mime_type)
            return {"json": await client.create_video(prompt, model, size, reference)}

        if operation == "list":
            return {"json": await client.list_videos()}

        video_id = str(self.get_param("video_id") or "").strip()
        if not video_id:
            raise ValueError(f"video_id is required for the '{operation}' operation")

        if operation == "remix":
            prompt = str(self.get_param("video_prompt") or "")
            return {"json": await client.remix_video(video_id, prompt)}

        if operation == "retrieve":
            if not self.get_param("smart_wait", True):
                return {"json": await client.retrieve_video(video_id)}
            max_attempts = max(1, self.settings.video_poll_max_attempts)

            def on_poll(attempt: int, result: dict[str, Any]) -> None:
                status = result.get("status", "unknown")
                self.report_progress(
                    (attempt + 1) / max_attempts * 100.0, f"video {video_id}: {status}"
                )
                self.emit_partial_result({"items": [{"json": result}]})

            result = await client.wait_for_video(
                video_id,
                interval_s=self.settings.video_poll_interval_s,
                max_attempts=max_attempts,
                should_stop=lambda: self._is_stopped,
                on_poll=on_poll,
            )
            return {"json": result}

        if operation == "download":
            content = await client.download_video(video_id)
            binary = await self.binary_store.prepare_binary_data(
                content, "sora_video.mp4", "video/mp4"
            )
            return {"json": {"status": "success"}, "binary": {"data": binary}}

        raise ValueError(f"Unsupported video operation: {operation}")
