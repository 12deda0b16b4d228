"""
School directory records referenced by financial transactions.

Enrollment forms and academic data live elsewhere; these models carry only
what billing needs: who is charged or paid, whether they are active, and
how to reach them.
"""
from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import uuid


class EnrollmentStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'
    TRANSFERRED = 'transferred', 'Transferred'


class EmploymentStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'


class Student(models.Model):
    """Enrolled student. Tuitions are billed to the student's guardian."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    registration_number = models.CharField(max_length=30, unique=True)
    cpf = models.CharField(max_length=14, blank=True)
    status = models.CharField(
        max_length=20,
        choices=EnrollmentStatus.choices,
        default=EnrollmentStatus.ACTIVE
    )
    class_name = models.CharField(max_length=100, blank=True)

    # Billing contact
    guardian_name = models.CharField(max_length=200, blank=True)
    guardian_email = models.EmailField(blank=True)
    guardian_cpf = models.CharField(max_length=14, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'students'
        indexes = [
            models.Index(fields=['status'], name='students_status_idx'),
            models.Index(fields=['name'], name='students_name_idx'),
        ]
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.registration_number})"

    @property
    def is_active(self):
        return self.status == EnrollmentStatus.ACTIVE

    def billing_contact(self):
        """Return (name, email, document) used on invoices."""
        if self.guardian_name:
            return self.guardian_name, self.guardian_email, self.guardian_cpf
        return self.name, self.guardian_email, self.cpf


class Teacher(models.Model):
    """Teacher on the payroll."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        'accounts.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='teacher_profile'
    )
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    cpf = models.CharField(max_length=14, blank=True)
    specialization = models.CharField(max_length=100, blank=True)
    salary = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    hire_date = models.DateField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=EmploymentStatus.choices,
        default=EmploymentStatus.ACTIVE
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'teachers'
        indexes = [
            models.Index(fields=['status'], name='teachers_status_idx'),
        ]
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def is_active(self):
        return self.status == EmploymentStatus.ACTIVE

    def billing_contact(self):
        return self.name, self.email, self.cpf
