"""Built-in skills for OpsPilot."""

from opspilot.skills.builtin.file_ops import FileOpsSkill
from opspilot.skills.builtin.notification import NotificationSkill
from opspilot.skills.builtin.shell import ShellSkill

__all__ = [
    "FileOpsSkill",
    "NotificationSkill",
    "ShellSkill",
]
