"""
Seed 005: Help Resources

Contextual tooltips, modals and FAQ entries shown by the help system.
Rows are keyed by (resource_type, title); view and helpful counters are
never touched.
"""

import logging

from eoty_db.database.schema_ops import upsert
from eoty_db.seeding.base import Seed

logger = logging.getLogger(__name__)

# (resource_type, component, page, audience, category, title, content)
HELP_RESOURCES = [
    ("tooltip", "dashboard", "/dashboard", "all", "navigation", "Your Dashboard",
     "<p>This is your command center. View your active courses, check upcoming events, "
     "and see your latest achievements at a glance.</p>"),
    ("tooltip", "course-card", "/courses", "all", "courses", "Course Overview",
     "<p>Click to view the syllabus, instructor details, and enrollment options.</p>"),
    ("faq", None, None, "all", "courses", "How do I start a course?",
     "<p>Simply click \"Enroll\" on any course card. The course will be added to your "
     "dashboard, and you can begin the first lesson immediately.</p>"),
    ("faq", None, None, "all", "courses", "Can I learn at my own pace?",
     "<p>Most courses are self-paced. You can pause and resume whenever you like. Your "
     "progress is automatically saved.</p>"),
    ("tooltip", "forum-topic", "/forums", "all", "community", "Join the Discussion",
     "<p>Engage with your peers! Ask questions, share your thoughts, and support others "
     "in their faith journey.</p>"),
    ("faq", None, None, "all", "community", "What is a Chapter Forum?",
     "<p>Chapter Forums are private spaces for members of your local chapter to discuss "
     "local events and coordinate activities.</p>"),
    ("faq", None, None, "all", "resources", "How do I search for resources?",
     "<p>Use the search bar and filters on the resources page to find resources by "
     "category, tags, author, or date.</p>"),
    ("modal", "course-editor", "/teacher/courses", "new_teacher", "teaching",
     "Creating Your First Course",
     "<p><strong>Course Creation Steps:</strong></p><ol><li>Click \"Create Course\"</li>"
     "<li>Fill in course details</li><li>Add lessons to your course</li>"
     "<li>Upload course materials</li><li>Publish your course</li></ol>"),
    ("faq", None, None, "new_teacher", "teaching", "How do I track student progress?",
     "<p>The progress dashboard on the course details page shows completion rates, quiz "
     "scores, and engagement metrics for each student.</p>"),
    ("modal", "admin-dashboard", "/admin", "new_admin", "administration",
     "Admin Dashboard Overview",
     "<p><strong>Admin Tools:</strong></p><ul><li>User Management</li>"
     "<li>Content Moderation</li><li>Analytics</li><li>System Configuration</li></ul>"),
    ("faq", None, None, "new_admin", "administration", "How do I moderate flagged content?",
     "<p>Open Moderation Tools in the admin dashboard, review flagged content and approve, "
     "warn or remove it.</p>"),
    ("tooltip", "ai-chat", "/ai-assistant", "all", "ai", "AI Assistant",
     "<p>The AI Assistant answers questions about faith, courses, and platform features "
     "in multiple languages.</p>"),
    ("faq", None, None, "all", "ai", "What languages does the AI Assistant support?",
     "<p>English, Amharic, Tigrigna, and Afan Oromo. It detects your language and "
     "responds accordingly.</p>"),
    ("faq", None, None, "all", "account", "How do I report inappropriate content?",
     "<p>Click the \"Report\" button on any post, comment, or resource. Our moderation "
     "team will review your report.</p>"),
]


class HelpResources(Seed):
    description = "Contextual help tooltips, modals and FAQ entries"

    def run(self, db, settings):
        counts = {"inserted": 0, "updated": 0, "unchanged": 0}
        for resource_type, component, page, audience, category, title, content in HELP_RESOURCES:
            outcome = upsert(
                db,
                "help_resources",
                {"resource_type": resource_type, "title": title},
                {
                    "component": component,
                    "page": page,
                    "audience": audience,
                    "category": category,
                    "content": content,
                    "is_active": True,
                },
            )
            counts[outcome] += 1
        logger.info(f"Help resources: {counts}")
