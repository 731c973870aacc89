"""
Report session - one report being composed or edited.

Bundles the EntityTree, the WizardController over it and the reconciler that
saves it. Entry points:
- start_new_report(variant)
- start_edit_report(repository, variant, intervention_id)
- session.save(mode)
"""

from typing import Optional
import logging

from schemas_reports import ReportVariant, SaveMode, SaveOutcome
from report_tree import EntityTree
from report_wizard import WizardController
from report_identity import IdentityAllocator, is_local_id
from report_persistence import PersistenceReconciler, load_report
from report_errors import WizardStateError
from repository import Repository, SqlAlchemyRepository

logger = logging.getLogger(__name__)


class ReportSession:

    def __init__(self, tree: EntityTree, repository: Optional[Repository] = None, persisted_id=None):
        self.tree = tree
        self.repository = repository or SqlAlchemyRepository()
        self.wizard = WizardController(tree)
        # Store id of the intervention this session was loaded from / last saved as
        self.persisted_id = persisted_id

    @property
    def variant(self) -> ReportVariant:
        return self.tree.variant

    @property
    def is_edit(self) -> bool:
        return self.persisted_id is not None

    async def save(self, mode: Optional[SaveMode] = None) -> SaveOutcome:
        """
        Save from the conclusion step. Default mode: update in place when the
        session already has a persisted intervention, else create new.
        """
        self.wizard.ensure_can_save()
        if mode is None:
            mode = SaveMode.UPDATE_IN_PLACE if self.is_edit else SaveMode.CREATE_NEW
        mode = SaveMode(mode)

        if mode == SaveMode.UPDATE_IN_PLACE:
            if self.persisted_id is None or is_local_id(self.tree.report.id):
                raise WizardStateError("Only a previously saved report can be updated in place")
            if self.tree.report.id != self.persisted_id:
                raise WizardStateError(
                    f"Report {self.tree.report.id} is not intervention {self.persisted_id} of this session"
                )

        outcome = await PersistenceReconciler(self.repository).save(self.tree, mode)
        self.persisted_id = outcome.intervention_id
        return outcome

    def state(self) -> dict:
        return {
            "variant": self.variant.value,
            "persisted_id": self.persisted_id,
            "wizard": self.wizard.state(),
            "report": self.tree.to_dict(),
        }


def start_new_report(
    variant: ReportVariant,
    repository: Optional[Repository] = None,
    allocator: Optional[IdentityAllocator] = None
) -> ReportSession:
    variant = ReportVariant(variant)
    tree = EntityTree.new(variant, allocator)
    logger.info(f"Started new {variant.value} report {tree.report.id}")
    return ReportSession(tree, repository)


async def start_edit_report(
    repository: Repository,
    variant: ReportVariant,
    intervention_id,
    allocator: Optional[IdentityAllocator] = None
) -> ReportSession:
    """Load a persisted report; raises RepositoryReadFailure"""
    tree = await load_report(repository, variant, intervention_id, allocator)
    return ReportSession(tree, repository, persisted_id=tree.report.id)
