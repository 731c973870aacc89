"""
Report wizard - step state machine over one EntityTree

    info -> client -> unit[0] -> unit[1] ... unit[n-1] -> conclusion
    (portable reports use the "portable" step instead of "unit")

next() validates the current step (and, on the equipment step, only the item
under the cursor) before moving. A failed next() leaves step and cursor
unchanged. Saving is only allowed from the conclusion step.
"""

import logging

from schemas_reports import WizardStep, ReportVariant
from report_validation import validate_step, missing_fields, invalid_fields
from report_errors import WizardStateError

logger = logging.getLogger(__name__)


class WizardController:

    def __init__(self, tree):
        self.tree = tree
        self.step = WizardStep.INFO
        self.current_index = 0

    @property
    def equipment_step(self) -> WizardStep:
        return WizardStep.UNIT if self.tree.variant == ReportVariant.FIXED else WizardStep.PORTABLE

    @property
    def steps(self):
        return [WizardStep.INFO, WizardStep.CLIENT, self.equipment_step, WizardStep.CONCLUSION]

    @property
    def last_index(self) -> int:
        return max(0, self.tree.repeated_count - 1)

    @property
    def current_item(self):
        items = self.tree.repeated_items
        if 0 <= self.current_index < len(items):
            return items[self.current_index]
        return None

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def next(self) -> WizardStep:
        validate_step(self.step, self.tree, self.current_index)

        if self.step == WizardStep.INFO:
            self.step = WizardStep.CLIENT
        elif self.step == WizardStep.CLIENT:
            self.step = self.equipment_step
            self.current_index = 0
        elif self.step == self.equipment_step:
            if self.current_index < self.last_index:
                self.current_index += 1
            else:
                self.step = WizardStep.CONCLUSION
        # Conclusion is terminal: only save() leaves it

        logger.debug(f"Wizard next -> {self.step.value}[{self.current_index}]")
        return self.step

    def back(self) -> WizardStep:
        if self.step == WizardStep.CONCLUSION:
            self.step = self.equipment_step
            self.current_index = self.last_index
        elif self.step == self.equipment_step:
            if self.current_index > 0:
                self.current_index -= 1
            else:
                self.step = WizardStep.CLIENT
        elif self.step == WizardStep.CLIENT:
            self.step = WizardStep.INFO

        logger.debug(f"Wizard back -> {self.step.value}[{self.current_index}]")
        return self.step

    # -------------------------------------------------------------------------
    # Repeated items (units / portable detectors)
    # -------------------------------------------------------------------------

    def add_item(self) -> int:
        """Append a unit / portable detector; on the equipment step, jump to it"""
        index = self.tree.add_repeated()
        if self.step == self.equipment_step:
            self.current_index = index
        return index

    def remove_item(self, index: int):
        """Remove a unit / portable detector and keep the cursor in range"""
        self.tree.remove_repeated(index)
        remaining = self.tree.repeated_count
        if index < self.current_index:
            self.current_index -= 1
        if self.current_index >= remaining:
            self.current_index = max(0, remaining - 1)

    # -------------------------------------------------------------------------
    # Save gate
    # -------------------------------------------------------------------------

    @property
    def can_save(self) -> bool:
        return self.step == WizardStep.CONCLUSION

    def ensure_can_save(self):
        if not self.can_save:
            raise WizardStateError(
                f"Reports can only be saved from the conclusion step (currently on {self.step.value})"
            )

    def state(self) -> dict:
        missing = missing_fields(self.step, self.tree, self.current_index)
        return {
            "step": self.step.value,
            "current_index": self.current_index,
            "item_count": self.tree.repeated_count,
            "missing_fields": missing,
            "invalid_fields": invalid_fields(self.step, self.tree),
            "can_save": self.can_save,
        }
