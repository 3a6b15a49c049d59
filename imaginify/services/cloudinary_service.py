# imaginify/services/cloudinary_service.py

import logging
import cloudinary
import cloudinary.uploader
import cloudinary.api
from cloudinary import CloudinaryImage
from fastapi import Request
from typing import Optional, Dict, Any, List
from imaginify.config import Settings
from imaginify.errors import UpstreamError
from imaginify.models.schemas import UploadedAsset
from imaginify.transformations.configs import (
    FillConfig,
    RecolorConfig,
    RemoveBackgroundConfig,
    RemoveConfig,
    RestoreConfig,
)

logger = logging.getLogger(__name__)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def transformation_options(config, width: Optional[int] = None, height: Optional[int] = None) -> Dict[str, Any]:
    """Translate a transformation config into Cloudinary URL options."""
    if isinstance(config, FillConfig):
        return {
            "crop": "pad",
            "background": "gen_fill",
            "width": width,
            "height": height,
        }

    if isinstance(config, RestoreConfig):
        effect = "gen_restore"
    elif isinstance(config, RemoveBackgroundConfig):
        effect = "background_removal"
    elif isinstance(config, RemoveConfig):
        opts = config.remove
        effect = (
            f"gen_remove:prompt_{opts.prompt};multiple_{_flag(opts.multiple)}"
            f";remove-shadow_{_flag(opts.remove_shadow)}"
        )
    elif isinstance(config, RecolorConfig):
        opts = config.recolor
        effect = f"gen_recolor:prompt_{opts.prompt};to-color_{opts.to.lstrip('#')};multiple_{_flag(opts.multiple)}"
    elif config is None:
        effect = None
    else:
        raise TypeError(f"Unsupported transformation config: {type(config).__name__}")

    options: Dict[str, Any] = {}
    if effect:
        options["effect"] = effect
    if width and height:
        options.update(width=width, height=height, crop="limit")
    return options


class CloudinaryService:
    def __init__(self, settings: Settings):
        self.folder = settings.cloudinary_folder
        self.search_limit = settings.cloudinary_search_limit
        # Configure Cloudinary from settings
        cloudinary.config(
            cloud_name = settings.cloudinary_cloud_name,
            api_key = settings.cloudinary_api_key,
            api_secret = settings.cloudinary_api_secret,
            secure = True
        )

    def upload_image(self, file_content: bytes, public_id: str, **options) -> UploadedAsset:
        """Upload an image to Cloudinary"""
        try:
            result = cloudinary.uploader.upload(
                file_content,
                public_id=public_id,
                folder=self.folder,
                resource_type="image",
                **options
            )
        except Exception as e:
            raise UpstreamError(f"Cloudinary upload failed: {str(e)}") from e
        logger.info(f"Cloudinary upload successful: {result['public_id']}")
        return UploadedAsset(
            public_id=result["public_id"],
            width=result["width"],
            height=result["height"],
            secure_url=result["secure_url"],
        )

    def destroy_image(self, public_id: str) -> Dict[str, Any]:
        """Delete an image from Cloudinary"""
        try:
            return cloudinary.uploader.destroy(public_id)
        except Exception as e:
            raise UpstreamError(f"Cloudinary delete failed: {str(e)}") from e

    def build_transformation_url(self, public_id: str, config, width: Optional[int] = None, height: Optional[int] = None) -> str:
        """Return the derived URL for ``public_id`` with ``config`` applied"""
        try:
            return CloudinaryImage(public_id).build_url(**transformation_options(config, width, height))
        except Exception as e:
            raise UpstreamError(f"Cloudinary transformation failed: {str(e)}") from e

    def search_public_ids(self, query: str) -> List[str]:
        """Asset identifiers in our folder matching a search expression"""
        expression = f"folder={self.folder}"
        if query:
            expression += f" AND {query}"
        try:
            result = cloudinary.Search().expression(expression).max_results(self.search_limit).execute()
        except Exception as e:
            raise UpstreamError(f"Cloudinary search failed: {str(e)}") from e
        return [resource["public_id"] for resource in result.get("resources", [])]

    def ping(self) -> bool:
        try:
            cloudinary.api.ping()
            return True
        except Exception as e:
            logger.warning(f"Cloudinary ping failed: {e}")
            return False


def get_cloudinary(request: Request) -> CloudinaryService:
    return request.app.state.cloudinary
