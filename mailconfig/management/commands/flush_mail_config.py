from django.core.management.base import BaseCommand

from mailconfig.resolver import get_resolver
from mailconfig.signals import on_application_flush, on_mail_settings_written


class Command(BaseCommand):
    help = "Clear cached mail configurations (all sites, or one site)"

    def add_arguments(self, parser):
        parser.add_argument(
            "--site",
            type=int,
            default=None,
            help="Only drop the cached configuration affected by this site id",
        )

    def handle(self, *args, **options):
        site_id = options["site"]

        if site_id is None:
            flushed = on_application_flush()
        else:
            flushed = on_mail_settings_written(site_id)

        cache = get_resolver().cache
        if not flushed:
            self.stderr.write(
                self.style.WARNING(f"Mail config cache '{cache.alias}' could not be flushed")
            )
            return

        target = "all sites" if site_id is None else f"site {site_id}"
        self.stdout.write(self.style.SUCCESS(f"Mail config cache flushed for {target}"))
