from django.core.management.base import BaseCommand

from stockguard.holds import reap_expired_holds


class Command(BaseCommand):
    help = "Return the stock of expired checkout holds. Meant to run from cron every minute."

    def handle(self, *args, **options):
        released = reap_expired_holds()
        if released is None:
            self.stdout.write("Another sweep is running, skipped.")
            return
        self.stdout.write(self.style.SUCCESS(f"Released {released} expired hold(s)."))
