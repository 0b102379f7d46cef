"""
Seed 004: Onboarding Flows, Steps and Milestones

One guided flow per audience (new users, teachers, administrators). Steps
are keyed by (flow, order) so reseeding updates text in place; each step
lists the previous step as its prerequisite. Milestones group steps and
the last one in each flow awards a badge.
"""

import json
import logging

from eoty_db.database.schema_ops import insert_if_missing, lookup_id, upsert
from eoty_db.seeding.base import Seed

logger = logging.getLogger(__name__)

FLOWS = {
    "new_user": {
        "name": "New User Onboarding",
        "description": "Introduces new members to courses, community and resources",
        "steps": [
            ("Welcome to Your Spiritual Journey",
             "Embark on a path of faith, learning, and community with the EOTY Platform.",
             "<p>Welcome! The EOTY Platform is your dedicated space to grow in the Ethiopian "
             "Orthodox Tewahedo faith. Here, you will find authentic teachings, connect with "
             "fellow youth, and access spiritual resources curated just for you.</p>",
             "info", None),
            ("Your Personal Dashboard",
             "Your central hub for learning and connection.",
             "<p>This is your home base. Quickly resume your last lesson, see upcoming events, "
             "and track your spiritual milestones.</p>",
             "action", None),
            ("Discover Faith-Aligned Courses",
             "Explore a catalog of courses designed to deepen your understanding.",
             "<p>Browse our catalog of courses, from Bible studies to Liturgical education. "
             "Filter by topic or difficulty to find the perfect starting point.</p>",
             "action", "Visit the courses page and browse available courses."),
            ("Connect in Fellowship",
             "Join a safe and supportive community of peers.",
             "<p>Join your chapter's forum to ask questions, share reflections, and build "
             "lasting friendships with other youth members.</p>",
             "info", None),
            ("Explore the Resource Library",
             "Access a wealth of authentic spiritual materials.",
             "<p>Dive into our library of books, articles, and multimedia resources.</p>",
             "info", None),
        ],
        "milestones": [
            ("Getting Started", "Complete the first steps of your journey",
             "Great start! You're on your way."),
            ("Exploring the Platform", "Learn about courses and community",
             "You're exploring like a pro!"),
            ("Onboarding Complete", "Finish your onboarding journey", None),
        ],
        "badge": ("Welcome Badge", "Awarded for completing the new user onboarding"),
    },
    "new_teacher": {
        "name": "Teacher Onboarding",
        "description": "Walks new teachers through course creation and student engagement",
        "steps": [
            ("Welcome, Teacher!",
             "Learn about your role as a teacher on the platform.",
             "<p>As a teacher, you can create and manage courses, interact with students, and "
             "contribute to the community.</p>",
             "info", None),
            ("Create Your First Course",
             "Learn how to create and structure a course.",
             "<p>Creating a course involves setting up course details, adding lessons, and "
             "organizing content.</p>",
             "action", "Navigate to the course creation page and explore the options."),
            ("Add Lessons to Your Course",
             "Learn how to add and organize lessons within your course.",
             "<p>Lessons are the building blocks of your course. You can add videos, quizzes, "
             "and resources to each lesson.</p>",
             "action", "Try adding a lesson to understand the lesson creation process."),
            ("Manage Student Engagement",
             "Learn how to interact with students and track their progress.",
             "<p>You can view student progress, respond to questions, and provide feedback "
             "through the platform.</p>",
             "info", None),
            ("Use Admin Tools",
             "Explore the admin tools available to teachers.",
             "<p>Teachers have access to moderation tools, analytics, and content management "
             "features.</p>",
             "info", None),
        ],
        "milestones": [
            ("Course Creation Basics", "Learn the fundamentals of course creation",
             "You're learning the basics!"),
            ("Advanced Teaching Tools", "Master lesson creation and student engagement",
             "You're becoming a teaching expert!"),
            ("Teacher Certified", "Complete your teacher onboarding", None),
        ],
        "badge": ("Teacher Onboarded", "Awarded for completing the teacher onboarding"),
    },
    "new_admin": {
        "name": "Administrator Onboarding",
        "description": "Covers user management, moderation, analytics and configuration",
        "steps": [
            ("Welcome, Administrator!",
             "Learn about your administrative responsibilities.",
             "<p>As an administrator, you have full access to platform management, user "
             "moderation, and system configuration.</p>",
             "info", None),
            ("User Management",
             "Learn how to manage users, roles, and permissions.",
             "<p>You can view all users, manage their roles, and handle user-related issues.</p>",
             "action", "Explore the user management section."),
            ("Content Moderation",
             "Learn about content moderation tools and workflows.",
             "<p>You can review flagged content, moderate discussions, and ensure platform "
             "safety.</p>",
             "action", "Review the moderation dashboard and tools."),
            ("Analytics and Reporting",
             "Learn how to access and interpret platform analytics.",
             "<p>The analytics dashboard provides insights into user engagement, course "
             "performance, and platform usage.</p>",
             "info", None),
            ("System Configuration",
             "Learn about system settings and configuration options.",
             "<p>You can configure platform settings, manage chapters, and control system-wide "
             "features.</p>",
             "info", None),
        ],
        "milestones": [
            ("User Management", "Master user and role management",
             "You're mastering user management!"),
            ("Platform Administration", "Learn moderation and analytics",
             "You're becoming an admin expert!"),
            ("Admin Certified", "Complete your admin training", None),
        ],
        "badge": ("Admin Certified", "Awarded for completing the admin onboarding"),
    },
}

# milestone order -> step orders it covers
MILESTONE_STEPS = {1: (1, 2), 2: (3, 4), 3: (5,)}


class Onboarding(Seed):
    description = "Onboarding flows with their steps, milestones and completion badges"

    def run(self, db, settings):
        for audience, flow in FLOWS.items():
            upsert(
                db,
                "onboarding_flows",
                {"audience": audience},
                {"name": flow["name"], "description": flow["description"], "is_active": True},
            )
            flow_id = lookup_id(db, "onboarding_flows", "audience", audience)
            step_ids = self._seed_steps(db, flow_id, flow["steps"])
            badge_id = self._seed_badge(db, *flow["badge"])
            self._seed_milestones(db, flow_id, flow["milestones"], step_ids, badge_id)
            logger.info(f"Onboarding flow {audience}: {len(step_ids)} steps")

    def _seed_steps(self, db, flow_id, steps):
        step_ids = {}
        previous_id = None
        for order, (title, description, content, step_type, action) in enumerate(steps, start=1):
            upsert(
                db,
                "onboarding_steps",
                {"flow_id": flow_id, "order_index": order},
                {
                    "title": title,
                    "description": description,
                    "content": content,
                    "step_type": step_type,
                    "action_required": action,
                    "prerequisites": json.dumps([previous_id] if previous_id else []),
                },
            )
            previous_id = db.scalar(
                "SELECT id FROM onboarding_steps WHERE flow_id = :flow AND order_index = :ord",
                {"flow": flow_id, "ord": order},
            )
            step_ids[order] = previous_id
        return step_ids

    def _seed_badge(self, db, name, description):
        if not db.has_table("badges"):
            return None
        insert_if_missing(db, "badges", {"name": name}, {"description": description})
        return lookup_id(db, "badges", "name", name)

    def _seed_milestones(self, db, flow_id, milestones, step_ids, badge_id):
        for order, (name, description, message) in enumerate(milestones, start=1):
            covered = MILESTONE_STEPS[order]
            if message is None:
                reward = {"reward_type": "badge", "badge_id": badge_id}
                reward_data = {"badge_id": badge_id}
            else:
                reward = {"reward_type": "message", "badge_id": None}
                reward_data = {"message": message}
            reward["reward_data"] = json.dumps(reward_data)
            upsert(
                db,
                "onboarding_milestones",
                {"flow_id": flow_id, "order_index": order},
                {"name": name, "description": description, "step_count": len(covered), **reward},
            )
            milestone_id = db.scalar(
                "SELECT id FROM onboarding_milestones WHERE flow_id = :flow AND order_index = :ord",
                {"flow": flow_id, "ord": order},
            )
            for step_order in covered:
                db.execute(
                    "UPDATE onboarding_steps SET milestone_id = :milestone WHERE id = :step",
                    {"milestone": milestone_id, "step": step_ids[step_order]},
                )
