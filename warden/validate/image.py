"""Trust verdicts for single container images."""

import logging
from typing import Optional

from ..errors import (
    ImageReferenceError,
    TrustServiceCancelled,
    TrustServiceError,
    TrustServiceTimeout,
    UnsignedRepository,
)
from ..models.image import ImageReference, parse_image_reference
from ..models.verdict import ImageVerdict, Verdict
from ..utils.cancel import CancelToken
from .registry import RegistryAllowList


logger = logging.getLogger(__name__)


class ImageValidator:
    """Combines the registry allow-list and the trust service into a verdict.

    ``validate`` never raises: every failure is expressed as a verdict. It does
    not cache, since whether a cached answer is still valid depends on the pod
    being reconciled rather than on the image alone.
    """

    def __init__(self, allow_list: RegistryAllowList, client_factory):
        self.allow_list = allow_list
        self.client_factory = client_factory

    def validate_image(self, image: str, digest: Optional[str] = None,
                       cancel: Optional[CancelToken] = None) -> ImageVerdict:
        """Parse ``image`` and validate it, treating parse errors as unverifiable."""
        try:
            ref = parse_image_reference(image)
            if digest and not ref.digest:
                ref = ref.with_digest(digest)
        except ImageReferenceError as e:
            logger.warning(f"Skipping unparseable image: {e}")
            return ImageVerdict(image, Verdict.UNVERIFIABLE, str(e))
        return self.validate(ref, cancel=cancel, image=image)

    def validate(self, ref: ImageReference, cancel: Optional[CancelToken] = None,
                 image: Optional[str] = None) -> ImageVerdict:
        image = image or str(ref)

        if not self.allow_list.matches(ref):
            return ImageVerdict(image, Verdict.NOT_APPLICABLE, "registry not subject to enforcement")

        if not ref.digest:
            return ImageVerdict(image, Verdict.UNVERIFIABLE, "image digest could not be resolved")

        try:
            with self.client_factory.open(ref, cancel=cancel) as client:
                trust_data = client.fetch(ref)
        except UnsignedRepository:
            logger.info(f"No signed data for {ref.name}")
            return ImageVerdict(image, Verdict.UNTRUSTED, f"repository {ref.name} is not signed")
        except TrustServiceTimeout as e:
            logger.warning(f"Trust service timed out validating {image}: {e}")
            return ImageVerdict(image, Verdict.UNVERIFIABLE, "trust service timed out")
        except TrustServiceCancelled:
            return ImageVerdict(image, Verdict.UNVERIFIABLE, "validation cancelled")
        except TrustServiceError as e:
            logger.warning(f"Unable to validate {image}: {e}")
            return ImageVerdict(image, Verdict.UNVERIFIABLE, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error validating {image}")
            return ImageVerdict(image, Verdict.UNVERIFIABLE, f"unexpected error: {e}")

        if not trust_data.is_signed(ref.digest):
            logger.info(f"Digest {ref.digest} of {ref.name} is not in the signed set")
            return ImageVerdict(image, Verdict.UNTRUSTED, f"digest {ref.digest} is not signed")

        return ImageVerdict(image, Verdict.TRUSTED, "signed digest matches")
