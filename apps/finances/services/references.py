"""Resolution and validation of the ``{type, id}`` reference a transaction carries."""
from uuid import UUID
from typing import Optional

from django.conf import settings

from apps.school.models import Student, Teacher
from apps.finances.exceptions import TransactionValidationError
from apps.finances.models import REQUIRED_REFERENCE, ReferenceType, TransactionType


REFERENCE_MODELS = {
    ReferenceType.STUDENT: Student,
    ReferenceType.TEACHER: Teacher,
}


def validate_reference(transaction_type: str, reference_type: str = '', reference_id: Optional[UUID] = None):
    """
    Check the reference against the transaction type and load the target.

    Returns:
        The referenced Student/Teacher, or None for expense/income

    Raises:
        TransactionValidationError: unknown type, missing reference, wrong
            reference kind, reference on expense/income, or missing target
    """
    if transaction_type not in TransactionType.values:
        raise TransactionValidationError(f'Unknown transaction type: {transaction_type}')

    required = REQUIRED_REFERENCE[TransactionType(transaction_type)]

    if required is None:
        if reference_type or reference_id:
            raise TransactionValidationError(
                f'{transaction_type.capitalize()} transactions do not take a reference.'
            )
        return None

    if not reference_type or not reference_id:
        raise TransactionValidationError(
            f'{transaction_type.capitalize()} transactions require a {required} reference.'
        )
    if reference_type != required:
        raise TransactionValidationError(
            f'{transaction_type.capitalize()} transactions must reference a {required}, '
            f'not a {reference_type}.'
        )

    return resolve_reference(reference_type, reference_id)


def resolve_reference(reference_type: str, reference_id: UUID):
    model = REFERENCE_MODELS.get(reference_type)
    if model is None:
        raise TransactionValidationError(f'Unknown reference type: {reference_type}')
    try:
        return model.objects.get(id=reference_id)
    except model.DoesNotExist:
        raise TransactionValidationError(f'{model.__name__} {reference_id} not found.')


def billing_contact(transaction):
    """
    Customer (name, email, document) an invoice for this transaction is issued to.

    Expense and income have no reference and use the school's own contact.
    """
    if not transaction.reference_type:
        return (
            settings.FINANCE_DEFAULT_CUSTOMER_NAME,
            settings.FINANCE_DEFAULT_CUSTOMER_EMAIL,
            '',
        )
    target = resolve_reference(transaction.reference_type, transaction.reference_id)
    return target.billing_contact()


def describe_reference(transaction, targets=None):
    """
    Expanded reference for API output, or None.

    ``targets`` is an optional ``{(type, id): instance}`` cache filled by
    ``load_reference_targets`` so lists avoid one query per row.
    """
    if not transaction.reference_type:
        return None

    key = (transaction.reference_type, transaction.reference_id)
    if targets is not None and key in targets:
        target = targets[key]
    else:
        model = REFERENCE_MODELS[transaction.reference_type]
        target = model.objects.filter(id=transaction.reference_id).first()

    data = {'type': transaction.reference_type, 'id': transaction.reference_id}
    if target is None:
        return data

    data['name'] = target.name
    if isinstance(target, Student):
        data['registration_number'] = target.registration_number
        data['class_name'] = target.class_name
        data['email'] = target.guardian_email
    else:
        data['email'] = target.email
    return data


def load_reference_targets(transactions):
    """Fetch every referenced student/teacher for a batch in two queries."""
    ids = {ReferenceType.STUDENT: set(), ReferenceType.TEACHER: set()}
    for tx in transactions:
        if tx.reference_type:
            ids[tx.reference_type].add(tx.reference_id)

    targets = {}
    for reference_type, id_set in ids.items():
        if not id_set:
            continue
        for target in REFERENCE_MODELS[reference_type].objects.filter(id__in=id_set):
            targets[(reference_type.value, target.id)] = target
    return targets
