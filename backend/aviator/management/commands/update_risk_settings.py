from decimal import Decimal, InvalidOperation

from django.core.management.base import BaseCommand, CommandError

from aviator.models import RiskSettings

DECIMAL_FIELDS = (
    "house_edge_percent",
    "min_bet_per_player",
    "max_bet_per_player",
    "max_exposure_per_round",
    "max_multiplier_cap",
    "display_multiplier_cap",
    "min_auto_cashout",
    "max_auto_cashout",
)
INT_FIELDS = ("countdown_ms", "tick_interval_ms", "crash_pause_ms")


class Command(BaseCommand):
    help = "Show or update the Aviator RiskSettings row"

    def add_arguments(self, parser):
        for field in DECIMAL_FIELDS:
            parser.add_argument(f"--{field.replace('_', '-')}", dest=field)
        for field in INT_FIELDS:
            parser.add_argument(f"--{field.replace('_', '-')}", dest=field, type=int)
        parser.add_argument("--allow-bets-in-flight", dest="allow_bets_in_flight",
                            choices=["yes", "no"])
        parser.add_argument("--reset", action="store_true", help="Restore all defaults first")

    def handle(self, *args, **options):
        if options["reset"]:
            RiskSettings.objects.all().delete()

        risk = RiskSettings.get()
        changed = []

        for field in DECIMAL_FIELDS:
            value = options.get(field)
            if value is None:
                continue
            try:
                setattr(risk, field, Decimal(value))
            except InvalidOperation:
                raise CommandError(f"{field}: not a number: {value}")
            changed.append(field)

        for field in INT_FIELDS:
            if options.get(field) is not None:
                if options[field] < 0:
                    raise CommandError(f"{field} must be >= 0")
                setattr(risk, field, options[field])
                changed.append(field)

        if options.get("allow_bets_in_flight"):
            risk.allow_bets_in_flight = options["allow_bets_in_flight"] == "yes"
            changed.append("allow_bets_in_flight")

        if not Decimal(0) <= risk.house_edge_percent < Decimal(100):
            raise CommandError("house_edge_percent must be in [0, 100)")
        if risk.min_bet_per_player > risk.max_bet_per_player:
            raise CommandError("min_bet_per_player exceeds max_bet_per_player")
        if risk.max_multiplier_cap < Decimal("1.00"):
            raise CommandError("max_multiplier_cap must be >= 1.00")

        risk.save()

        if changed:
            self.stdout.write(self.style.SUCCESS(f"Updated: {', '.join(changed)}"))
        self.stdout.write(f"  house_edge_percent: {risk.house_edge_percent}%")
        self.stdout.write(f"  min_bet_per_player: {risk.min_bet_per_player:,.2f}")
        self.stdout.write(f"  max_bet_per_player: {risk.max_bet_per_player:,.2f}")
        self.stdout.write(f"  max_exposure_per_round: {risk.max_exposure_per_round:,.2f}")
        self.stdout.write(f"  max_multiplier_cap: {risk.max_multiplier_cap}x")
        self.stdout.write(f"  display_multiplier_cap: {risk.display_multiplier_cap}x")
        self.stdout.write(f"  auto cashout: {risk.min_auto_cashout}x - {risk.max_auto_cashout}x")
        self.stdout.write(f"  timing: countdown {risk.countdown_ms}ms, tick {risk.tick_interval_ms}ms, "
                          f"pause {risk.crash_pause_ms}ms")
        self.stdout.write(f"  allow_bets_in_flight: {risk.allow_bets_in_flight}")
