# -*- coding: utf-8 -*-
"""
Level 8: lifecycle fields of imported claims.

Claims exported by a tablet are drafts collected in the field; the commit
moves them to Submitted. Anything else is reported as a warning.
"""

from typing import List

from models import vocabulary as vocab
from models.staging import CLAIM, EntityFamily, StagingClaim, StagingRecord
from services.validation.base import BaseValidator, Findings


class ClaimLifecycleValidator(BaseValidator):
    """Lifecycle stage, status and source of imported claims."""

    name = "ClaimLifecycleValidator"
    level = 8
    families = (CLAIM,)

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        if not isinstance(record, StagingClaim):
            return [], []
        warnings: List[str] = []

        if (record.lifecycle_stage is not None
                and record.lifecycle_stage != vocab.LIFECYCLE_DRAFT_PENDING_SUBMISSION):
            warnings.append(
                f"Imported claim has LifecycleStage={record.lifecycle_stage}; "
                f"expected DraftPendingSubmission (will be set to Submitted on commit)"
            )
        if record.status is not None and record.status != vocab.CLAIM_STATUS_DRAFT:
            warnings.append(
                f"Imported claim has Status={record.status}; "
                f"expected Draft (will be set to Submitted on commit)"
            )
        if record.claim_source != vocab.CLAIM_SOURCE_FIELD_COLLECTION:
            warnings.append(f"ClaimSource={record.claim_source}; expected FieldCollection for tablet import")

        return [], warnings
