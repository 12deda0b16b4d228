# ==========================================
# apps/school/admin.py
# ==========================================

from django.contrib import admin
from .models import Student, Teacher


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ['name', 'registration_number', 'class_name', 'status', 'guardian_name']
    list_filter = ['status', 'class_name']
    search_fields = ['name', 'registration_number', 'guardian_name', 'guardian_email']
    ordering = ['name']


@admin.register(Teacher)
class TeacherAdmin(admin.ModelAdmin):
    list_display = ['name', 'email', 'specialization', 'salary', 'status']
    list_filter = ['status']
    search_fields = ['name', 'email']
    ordering = ['name']
