"""
Integrity ledger CLI commands.
"""
from pollvault.cli.base import Command
from pollvault.services import integrity_service


class IntegrityCommand(Command):
    """Integrity ledger command handler."""

    def execute(self, args) -> int:
        if args.integrity_action == "list":
            return self.run(self._list(args.hackathon))
        elif args.integrity_action == "verify":
            if args.commitment is not None:
                return self.run(self._verify_one(args.commitment))
            return self.run(self._verify_all(args.hackathon))
        else:
            print("Error: Unknown integrity action")
            return 1

    async def _list(self, hackathon_id: int) -> int:
        async with self.session() as db:
            commitments = await integrity_service.list_commitments(db, hackathon_id)

        if not commitments:
            print("No commitments found")
            return 0

        print(f"\n{'ID':<5} {'Type':<12} {'Hash':<66} {'Anchor':<20}")
        print("-" * 105)
        for c in commitments:
            print(f"{c.id:<5} {c.commitment_type:<12} {c.commitment_hash:<66} {(c.tx_ref or '-')[:20]:<20}")
        return 0

    async def _verify_one(self, commitment_id: int) -> int:
        async with self.session() as db:
            result = await integrity_service.verify(db, commitment_id)
        self._print_result(result)
        return 0 if result.is_valid else 2

    async def _verify_all(self, hackathon_id: int) -> int:
        async with self.session() as db:
            report = await integrity_service.verify_all(db, hackathon_id)

        if not report.results:
            print("No commitments found")
            return 0
        for result in report.results:
            self._print_result(result)
        print(f"\nAll valid: {report.all_valid}")
        return 0 if report.all_valid else 2

    @staticmethod
    def _print_result(result) -> None:
        status = "OK " if result.is_valid else "TAMPERED"
        print(f"[{status}] #{result.commitment_id} {result.commitment_type}: {result.stored_hash}")
        if not result.is_valid:
            print(f"          recomputed: {result.recomputed_hash}")
