from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import (
    School,
    User,
    Subject,
    Term,
    SchoolClass,
    ClassTerm,
    StudentClassEnrollment,
    TeacherSubject,
    TeacherClassTerm,
    GradingSystem,
    GradeLevel,
    Assessment,
    ChangeLog,
)


@admin.register(User)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'first_name', 'last_name', 'role', 'school', 'admission_no', 'is_active')
    list_filter = ('role', 'school', 'is_active', 'is_staff')
    search_fields = ('username', 'first_name', 'last_name', 'email', 'admission_no')
    ordering = ('username',)

    fieldsets = UserAdmin.fieldsets + (
        ('School', {'fields': ('role', 'school', 'admission_no')}),
    )
    add_fieldsets = UserAdmin.add_fieldsets + (
        ('School', {'fields': ('role', 'school', 'admission_no')}),
    )


@admin.register(School)
class SchoolAdmin(admin.ModelAdmin):
    list_display = ('name', 'created_at', 'updated_at')
    search_fields = ('name',)
    ordering = ('name',)


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'school')
    list_filter = ('school',)
    search_fields = ('name', 'code')


@admin.register(Term)
class TermAdmin(admin.ModelAdmin):
    list_display = ('name', 'academic_year', 'school', 'is_current', 'start_date', 'end_date')
    list_filter = ('school', 'is_current', 'academic_year')
    ordering = ('-start_date',)


@admin.register(SchoolClass)
class SchoolClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'level', 'school')
    list_filter = ('school', 'level')
    search_fields = ('name',)


@admin.register(ClassTerm)
class ClassTermAdmin(admin.ModelAdmin):
    list_display = ('school_class', 'term')
    list_filter = ('term', 'school_class__school')
    filter_horizontal = ('subjects',)


@admin.register(StudentClassEnrollment)
class StudentClassEnrollmentAdmin(admin.ModelAdmin):
    list_display = ('student', 'class_term', 'status', 'school')
    list_filter = ('status', 'school')
    search_fields = ('student__username', 'student__first_name', 'student__last_name', 'student__admission_no')


@admin.register(TeacherSubject)
class TeacherSubjectAdmin(admin.ModelAdmin):
    list_display = ('teacher', 'subject', 'term')
    list_filter = ('term',)


@admin.register(TeacherClassTerm)
class TeacherClassTermAdmin(admin.ModelAdmin):
    list_display = ('teacher', 'class_term')


class GradeLevelInline(admin.TabularInline):
    model = GradeLevel
    extra = 0


@admin.register(GradingSystem)
class GradingSystemAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'pass_mark', 'is_default')
    list_filter = ('school', 'is_default')
    inlines = [GradeLevelInline]


@admin.register(Assessment)
class AssessmentAdmin(admin.ModelAdmin):
    list_display = ('student', 'subject', 'term', 'teacher', 'ca1', 'ca2', 'ca3', 'exam',
                    'is_absent', 'is_exempt', 'is_published', 'updated_at')
    list_filter = ('term', 'subject', 'is_published', 'is_absent', 'is_exempt')
    search_fields = ('student__username', 'student__first_name', 'student__last_name', 'student__admission_no')
    raw_id_fields = ('student', 'enrollment', 'teacher', 'created_by', 'edited_by')


@admin.register(ChangeLog)
class ChangeLogAdmin(admin.ModelAdmin):
    list_display = ('model', 'object_id', 'action', 'user', 'school', 'timestamp')
    list_filter = ('model', 'action', 'school')
    readonly_fields = ('model', 'object_id', 'action', 'data', 'user', 'school', 'timestamp')
