from django.db import models
from django.conf import settings


class Wallet(models.Model):
    """Balance for one owner and account kind. Mutated only through services.ledger."""
    KIND_CHOICES = [
        ('rider', 'Rider'),
        ('driver', 'Driver'),
    ]

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='wallets')
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    # Signed: a negative balance is debt
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='INR')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'wallets'
        constraints = [
            models.UniqueConstraint(fields=['owner', 'kind'], name='unique_wallet_per_owner_kind')
        ]

    def __str__(self):
        return f"{self.kind} wallet of {self.owner_id}: {self.balance} {self.currency}"


class WalletTransaction(models.Model):
    """Append-only ledger entry."""
    TYPE_CHOICES = [
        ('credit', 'Credit'),
        ('debit', 'Debit'),
    ]

    wallet = models.ForeignKey(Wallet, on_delete=models.PROTECT, related_name='transactions')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    balance_before = models.DecimalField(max_digits=12, decimal_places=2)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    description = models.CharField(max_length=255, blank=True)
    reference_type = models.CharField(max_length=32, blank=True)
    reference_id = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'wallet_transactions'
        ordering = ['id']

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Wallet transactions are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Wallet transactions are append-only")

    @property
    def signed_amount(self):
        return self.amount if self.type == 'credit' else -self.amount

    def __str__(self):
        return f"{self.type} {self.amount} on wallet {self.wallet_id}"
