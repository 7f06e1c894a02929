from django.core.management.base import BaseCommand

from mflix.services.comment_service import CommentService
from mflix.services.user_service import UserService


class Command(BaseCommand):
    help = "Create the mflix indexes (unique user email, session and comment lookups)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--purge-orphan-sessions",
            action="store_true",
            help="Also delete sessions whose user no longer exists.",
        )

    def handle(self, *args, **opts):
        users = UserService.from_settings()
        comments = CommentService.from_settings()

        self.stdout.write("Creating indexes...")
        users.ensure_indexes()
        comments.ensure_indexes()
        self.stdout.write(self.style.SUCCESS("Indexes ready"))

        if opts["purge_orphan_sessions"]:
            removed = users.purge_orphan_sessions()
            self.stdout.write(self.style.SUCCESS(f"Removed {removed} orphan sessions"))
