import logging

from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
from django.forms.models import model_to_dict

from .grading import grading_cache
from .models import Assessment, ChangeLog, GradeLevel, GradingSystem

logger = logging.getLogger(__name__)

# List of models to track
TRACKED_MODELS = [Assessment, GradingSystem, GradeLevel]

GRADING_MODELS = [GradingSystem, GradeLevel]


def _school_id(instance):
    if isinstance(instance, GradeLevel):
        return GradingSystem.objects.filter(id=instance.grading_system_id).values_list('school_id', flat=True).first()
    if isinstance(instance, Assessment):
        return instance.enrollment.school_id
    return instance.school_id


def _create_changelog_entry(instance, action):
    try:
        data = model_to_dict(instance)
    except Exception:
        data = {}

    user_id = getattr(instance, 'edited_by_id', None)
    try:
        with transaction.atomic():
            ChangeLog.objects.create(
                model=instance.__class__.__name__,
                object_id=str(getattr(instance, 'id', '')),
                action=action,
                data=data,
                user_id=user_id,
                school_id=_school_id(instance),
            )
    except Exception as e:
        # Auditing must never break the write that triggered it
        logger.warning(f"Could not record {action} of {instance.__class__.__name__} {instance.pk}: {e}")


def _invalidate_grading(instance):
    school_id = _school_id(instance)
    if school_id is None:
        grading_cache.invalidate_all()
    else:
        grading_cache.invalidate(school_id)


@receiver(post_save)
def handle_post_save(sender, instance, created, **kwargs):
    if sender not in TRACKED_MODELS:
        return
    if sender in GRADING_MODELS:
        _invalidate_grading(instance)
    _create_changelog_entry(instance, 'create' if created else 'update')


@receiver(post_delete)
def handle_post_delete(sender, instance, **kwargs):
    if sender not in TRACKED_MODELS:
        return
    if sender in GRADING_MODELS:
        _invalidate_grading(instance)
    _create_changelog_entry(instance, 'delete')
