from django.contrib.auth.models import AbstractUser
from django.db import models


class School(models.Model):
    name = models.CharField(max_length=255, db_index=True, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class User(AbstractUser):
    ROLE_CHOICES = (
        ('super_admin', 'Super Admin'),
        ('admin', 'Admin'),
        ('teacher', 'Teacher'),
        ('student', 'Student'),
    )
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='student', db_index=True)
    school = models.ForeignKey(School, on_delete=models.CASCADE, null=True, blank=True, db_index=True)
    admission_no = models.CharField(max_length=50, blank=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def display_name(self):
        return self.get_full_name() or self.username


class Subject(models.Model):
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20, blank=True)
    school = models.ForeignKey(School, on_delete=models.CASCADE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        unique_together = ('name', 'school')
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})" if self.code else self.name


class Term(models.Model):
    name = models.CharField(max_length=100)  # e.g., 'First Term'
    academic_year = models.CharField(max_length=20, blank=True)  # e.g., '2024/2025'
    school = models.ForeignKey(School, on_delete=models.CASCADE, db_index=True)
    start_date = models.DateField(null=True, blank=True, db_index=True)
    end_date = models.DateField(null=True, blank=True, db_index=True)
    is_current = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        unique_together = ('name', 'academic_year', 'school')

    def __str__(self):
        return f"{self.name} {self.academic_year}".strip()


class SchoolClass(models.Model):
    name = models.CharField(max_length=100)  # e.g., 'JSS1A'
    level = models.CharField(max_length=50, blank=True)
    school = models.ForeignKey(School, on_delete=models.CASCADE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        unique_together = ('name', 'school')
        verbose_name_plural = "School classes"

    def __str__(self):
        return self.name


class ClassTerm(models.Model):
    """A class instance scoped to one academic term, e.g. 'JSS1A, First Term'."""
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='class_terms', db_index=True)
    term = models.ForeignKey(Term, on_delete=models.CASCADE, related_name='class_terms', db_index=True)
    subjects = models.ManyToManyField(Subject, related_name='class_terms', blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('school_class', 'term')

    def __str__(self):
        return f"{self.school_class.name}, {self.term.name}"

    @property
    def school_id(self):
        return self.school_class.school_id


class StudentClassEnrollment(models.Model):
    STATUS_CHOICES = (
        ('ACTIVE', 'Active'),
        ('INACTIVE', 'Inactive'),
        ('WITHDRAWN', 'Withdrawn'),
        ('PROMOTED', 'Promoted'),
    )
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='enrollments', db_index=True)
    class_term = models.ForeignKey(ClassTerm, on_delete=models.CASCADE, related_name='enrollments', db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='ACTIVE', db_index=True)
    school = models.ForeignKey(School, on_delete=models.CASCADE, db_index=True)
    enrollment_date = models.DateField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        unique_together = ('student', 'class_term')

    def __str__(self):
        return f"{self.student.username} in {self.class_term} ({self.status})"


class TeacherSubject(models.Model):
    teacher = models.ForeignKey(User, on_delete=models.CASCADE, related_name='teacher_subjects', limit_choices_to={'role': 'teacher'}, db_index=True)
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name='teacher_subjects', db_index=True)
    term = models.ForeignKey(Term, on_delete=models.CASCADE, related_name='teacher_subjects', db_index=True)

    class Meta:
        unique_together = ('teacher', 'subject', 'term')

    def __str__(self):
        return f"{self.teacher.username} teaches {self.subject.name} ({self.term})"


class TeacherClassTerm(models.Model):
    teacher = models.ForeignKey(User, on_delete=models.CASCADE, related_name='teacher_class_terms', limit_choices_to={'role': 'teacher'}, db_index=True)
    class_term = models.ForeignKey(ClassTerm, on_delete=models.CASCADE, related_name='teachers', db_index=True)

    class Meta:
        unique_together = ('teacher', 'class_term')

    def __str__(self):
        return f"{self.teacher.username} in {self.class_term}"


class GradingSystem(models.Model):
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    pass_mark = models.FloatField(default=40)
    is_default = models.BooleanField(default=False, db_index=True)
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='grading_systems', db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        unique_together = ('name', 'school')
        ordering = ['-is_default', 'name']

    def __str__(self):
        return f"{self.name} - {self.school.name}"

    def save(self, *args, **kwargs):
        # Only one default grading system per school
        if self.is_default:
            GradingSystem.objects.filter(school=self.school, is_default=True).exclude(pk=self.pk).update(is_default=False)
        super().save(*args, **kwargs)


class GradeLevel(models.Model):
    grading_system = models.ForeignKey(GradingSystem, on_delete=models.CASCADE, related_name='levels', db_index=True)
    min_score = models.FloatField()
    max_score = models.FloatField()
    grade = models.CharField(max_length=10)
    remark = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ['-max_score']

    def __str__(self):
        return f"{self.grade} ({self.min_score}-{self.max_score})"

    @property
    def school_id(self):
        return self.grading_system.school_id


class Assessment(models.Model):
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='assessments', db_index=True)
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name='assessments', db_index=True)
    term = models.ForeignKey(Term, on_delete=models.CASCADE, related_name='assessments', db_index=True)
    enrollment = models.ForeignKey(StudentClassEnrollment, on_delete=models.CASCADE, related_name='assessments', db_index=True)
    teacher = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='owned_assessments', db_index=True)
    ca1 = models.FloatField(null=True, blank=True)
    ca2 = models.FloatField(null=True, blank=True)
    ca3 = models.FloatField(null=True, blank=True)
    exam = models.FloatField(null=True, blank=True)
    is_absent = models.BooleanField(default=False)
    is_exempt = models.BooleanField(default=False)
    is_published = models.BooleanField(default=False, db_index=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    edited_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'subject', 'term', 'teacher'],
                name='unique_assessment_per_teacher'
            )
        ]
        indexes = [
            models.Index(fields=['term', 'subject'], name='assessment_term_subject_idx'),
        ]

    def __str__(self):
        return f"{self.student.username} - {self.subject.name} - {self.term.name}"

    @property
    def school_id(self):
        return self.enrollment.school_id


class ChangeLog(models.Model):
    ACTION_CHOICES = (
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
    )

    model = models.CharField(max_length=100, db_index=True)
    object_id = models.CharField(max_length=100, db_index=True)
    action = models.CharField(max_length=10, choices=ACTION_CHOICES, db_index=True)
    data = models.JSONField(null=True, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    school = models.ForeignKey(School, null=True, blank=True, on_delete=models.CASCADE, related_name='+')

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.model} {self.object_id} {self.action} @ {self.timestamp.isoformat()}"
